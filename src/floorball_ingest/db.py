# src/floorball_ingest/db.py

import datetime
import logging
import os
import sqlite3
from typing import Optional

from floorball_ingest.config import DB_NAME

# --- register adapters/converters once (Python 3.12+ friendly) ---
_ADAPTERS_REGISTERED = False


def get_conn(db_name: Optional[str] = None):
    db_name = db_name or DB_NAME
    try:
        _register_sqlite_date_time_adapters()

        if db_name != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(db_name)), exist_ok=True)

        # Enable parsing for declared column types (DATE/TIMESTAMP)
        conn = sqlite3.connect(
            db_name,
            detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES
        )
        logging.debug(f"Connected to database: {db_name}")

        if db_name != ":memory:":
            conn.execute("PRAGMA journal_mode = WAL;")
            conn.execute("PRAGMA synchronous = NORMAL;")
        conn.execute("PRAGMA temp_store = MEMORY;")
        conn.execute("PRAGMA foreign_keys = ON;")

        return conn, conn.cursor()

    except sqlite3.Error as e:
        logging.error(f"Database connection failed: {e}")
        raise


def _register_sqlite_date_time_adapters() -> None:
    global _ADAPTERS_REGISTERED
    if _ADAPTERS_REGISTERED:
        return

    # Serialize Python date/datetime -> ISO strings
    sqlite3.register_adapter(datetime.date, lambda d: d.isoformat())
    sqlite3.register_adapter(datetime.datetime, lambda dt: dt.isoformat(sep=" "))

    # Parse DB values back into Python objects for columns declared as DATE/TIMESTAMP
    sqlite3.register_converter("DATE", lambda b: datetime.date.fromisoformat(b.decode()[:10]))
    sqlite3.register_converter("TIMESTAMP", lambda b: datetime.datetime.fromisoformat(b.decode()))

    _ADAPTERS_REGISTERED = True


def create_tables(cursor):

    logging.info("Creating tables if needed...")

    # Match schedule, maintained by the schedule import (read-only here)
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS matches (
            id                              TEXT PRIMARY KEY,
            external_id                     TEXT,
            protocol_url                    TEXT,
            home_team                       TEXT,
            away_team                       TEXT,
            home_score                      INTEGER,
            away_score                      INTEGER,
            status                          TEXT DEFAULT 'scheduled',
            season                          TEXT,
            date                            DATE,
            FOREIGN KEY (home_team)         REFERENCES teams(id),
            FOREIGN KEY (away_team)         REFERENCES teams(id)
        )
    ''')

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS teams (
            id                              TEXT PRIMARY KEY,
            name                            TEXT,
            code                            TEXT,
            external_id                     TEXT
        )
    ''')

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS players (
            id                              TEXT PRIMARY KEY,
            name                            TEXT,
            team                            TEXT,
            team_id                         TEXT,
            jersey_number                   TEXT,
            external_id                     TEXT,
            FOREIGN KEY (team_id)           REFERENCES teams(id)
        )
    ''')

    # Written by this pipeline: always replaced as a full set per match_id
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS match_events (
            id                              INTEGER PRIMARY KEY AUTOINCREMENT,
            match_id                        TEXT NOT NULL,
            team_id                         TEXT,
            player_id                       TEXT NOT NULL,
            event_type                      TEXT NOT NULL,
            ts_seconds                      INTEGER,
            minute                          INTEGER,
            period                          INTEGER,
            value                           INTEGER,
            raw_player                      TEXT,
            raw_team                        TEXT,
            row_created                     TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (match_id)          REFERENCES matches(id) ON DELETE CASCADE
        )
    ''')

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS match_goalie_stats (
            match_id                        TEXT NOT NULL,
            player_id                       TEXT NOT NULL,
            team_id                         TEXT,
            goals_against                   INTEGER,
            shots                           INTEGER,
            saves                           INTEGER,
            minutes_seconds                 INTEGER,
            raw_player                      TEXT,
            row_created                     TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (match_id, player_id),
            FOREIGN KEY (match_id)          REFERENCES matches(id) ON DELETE CASCADE
        )
    ''')

    # Written by the external point computation; read here for sanity counts only
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS player_match_points (
            id                              INTEGER PRIMARY KEY AUTOINCREMENT,
            match_id                        TEXT NOT NULL,
            player_id                       TEXT NOT NULL,
            team_id                         TEXT,
            position                        TEXT,
            goals                           INTEGER DEFAULT 0,
            assists                         INTEGER DEFAULT 0,
            pen_min                         INTEGER DEFAULT 0,
            saves                           INTEGER DEFAULT 0,
            goals_against                   INTEGER DEFAULT 0,
            fantasy_points                  REAL DEFAULT 0
        )
    ''')

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS log_details (
            id                      INTEGER PRIMARY KEY AUTOINCREMENT,
            run_id                  TEXT NOT NULL,
            run_date                DATETIME DEFAULT CURRENT_TIMESTAMP,
            object_type             TEXT NOT NULL,
            process_type            TEXT NOT NULL,
            function_name           TEXT NOT NULL,
            filename                TEXT NOT NULL,
            context_json            TEXT,
            status                  TEXT NOT NULL,      -- 'error', 'warning', 'skipped', 'success'
            message                 TEXT NOT NULL,
            msg_id                  TEXT
        )
    ''')

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS run_log (
            id                      INTEGER PRIMARY KEY AUTOINCREMENT,
            run_id                  TEXT NOT NULL,
            run_date                DATETIME DEFAULT CURRENT_TIMESTAMP,
            object_type             TEXT NOT NULL,
            process_type            TEXT NOT NULL,
            records_processed       INTEGER DEFAULT 0,
            records_success         INTEGER DEFAULT 0,
            records_failed          INTEGER DEFAULT 0,
            records_skipped         INTEGER DEFAULT 0,
            records_warnings        INTEGER DEFAULT 0,
            runtime_seconds         REAL,
            remarks                 TEXT
        )
    ''')


def create_indexes(cursor):

    indexes = [
        # Selection of finished matches per season / trailing window
        "CREATE INDEX IF NOT EXISTS idx_matches_status_season ON matches(status, season)",
        "CREATE INDEX IF NOT EXISTS idx_matches_date ON matches(date)",
        # Re-ingestion by external identifier
        "CREATE INDEX IF NOT EXISTS idx_matches_external_id ON matches(external_id)",
        # Delete scope and per-match counts
        "CREATE INDEX IF NOT EXISTS idx_match_events_match ON match_events(match_id)",
        "CREATE INDEX IF NOT EXISTS idx_player_match_points_match ON player_match_points(match_id)",
        # Roster lookups
        "CREATE INDEX IF NOT EXISTS idx_players_team_id ON players(team_id)",
    ]

    for sql in indexes:
        cursor.execute(sql)


def init_db(db_name: Optional[str] = None):
    """Open a connection and make sure the schema exists."""
    conn, cursor = get_conn(db_name)
    create_tables(cursor)
    create_indexes(cursor)
    conn.commit()
    return conn, cursor
