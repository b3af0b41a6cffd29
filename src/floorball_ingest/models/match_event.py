# src/floorball_ingest/models/match_event.py

from dataclasses import asdict, dataclass
import logging
import sqlite3
from typing import Dict, Iterable, List, Optional, Tuple

from floorball_ingest.errors import PersistenceError

EVENT_TYPES = ("goal", "assist", "minor_2", "double_minor")


@dataclass
class ParsedEvent:
    event_type:     str
    raw_team:       Optional[str] = None
    raw_player:     Optional[str] = None
    ts_seconds:     Optional[int] = None
    minute:         Optional[int] = None
    period:         Optional[int] = None
    value:          Optional[int] = None


@dataclass
class InsertableEvent:
    match_id:       str
    team_id:        Optional[str]
    player_id:      Optional[str]
    event_type:     str
    ts_seconds:     Optional[int] = None
    minute:         Optional[int] = None
    period:         Optional[int] = None
    value:          Optional[int] = None
    raw_player:     Optional[str] = None
    raw_team:       Optional[str] = None

    def is_persistable(self) -> bool:
        return bool(self.player_id) and self.event_type in EVENT_TYPES

    def dedupe_key(self) -> Tuple:
        return (self.event_type, self.player_id, self.ts_seconds, self.period)

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class GoalieStatRow:
    match_id:           str
    player_id:          str
    team_id:            Optional[str] = None
    goals_against:      Optional[int] = None
    shots:              Optional[int] = None
    saves:              Optional[int] = None
    minutes_seconds:    Optional[int] = None
    raw_player:         Optional[str] = None

    def to_dict(self) -> Dict:
        return asdict(self)


def replace_match_rows(
    cursor:         sqlite3.Cursor,
    match_id:       str,
    events:         List[InsertableEvent],
    goalie_stats:   Optional[List[GoalieStatRow]] = None,
) -> Tuple[int, int]:
    """
    Replace the full event set (and goalie stat set) of one match.
    Delete-then-insert inside one transaction: either both phases commit or the previous rows stay.
    Returns (events_inserted, goalie_rows_inserted).
    """
    goalie_stats = goalie_stats or []
    conn = cursor.connection
    phase = "delete"
    try:
        if conn.in_transaction:
            conn.commit()
        cursor.execute("BEGIN")
        cursor.execute("DELETE FROM match_events WHERE match_id = ?", (match_id,))
        cursor.execute("DELETE FROM match_goalie_stats WHERE match_id = ?", (match_id,))

        phase = "insert"
        cursor.executemany("""
            INSERT INTO match_events (
                match_id, team_id, player_id, event_type, ts_seconds,
                minute, period, value, raw_player, raw_team
            ) VALUES (
                :match_id, :team_id, :player_id, :event_type, :ts_seconds,
                :minute, :period, :value, :raw_player, :raw_team
            )
        """, [e.to_dict() for e in events])
        cursor.executemany("""
            INSERT INTO match_goalie_stats (
                match_id, player_id, team_id, goals_against, shots,
                saves, minutes_seconds, raw_player
            ) VALUES (
                :match_id, :player_id, :team_id, :goals_against, :shots,
                :saves, :minutes_seconds, :raw_player
            )
        """, [g.to_dict() for g in goalie_stats])
        conn.commit()
    except sqlite3.Error as e:
        conn.rollback()
        logging.error(f"Persist failed during {phase} for match {match_id}: {e}")
        raise PersistenceError(f"{phase} failed for match {match_id}: {e}") from e

    return len(events), len(goalie_stats)


def fetch_match_events(cursor: sqlite3.Cursor, match_id: str) -> List[Dict]:
    cursor.execute("""
        SELECT match_id, team_id, player_id, event_type, ts_seconds,
               minute, period, value, raw_player, raw_team
        FROM match_events
        WHERE match_id = ?
        ORDER BY id
    """, (match_id,))
    columns = [col[0] for col in cursor.description]
    return [dict(zip(columns, row)) for row in cursor.fetchall()]


def _chunks(items: List[str], size: int) -> Iterable[List[str]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


def count_rows_by_match(cursor: sqlite3.Cursor, table: str, match_ids: List[str]) -> Dict[str, int]:
    """Row counts per match_id for match_events, match_goalie_stats or player_match_points."""
    if table not in ("match_events", "match_goalie_stats", "player_match_points"):
        raise ValueError(f"Unsupported table for counting: {table}")
    counts: Dict[str, int] = {}
    for chunk in _chunks(match_ids, 200):
        placeholders = ",".join("?" for _ in chunk)
        cursor.execute(
            f"SELECT match_id, COUNT(*) FROM {table} WHERE match_id IN ({placeholders}) GROUP BY match_id",
            tuple(chunk),
        )
        for match_id, count in cursor.fetchall():
            counts[match_id] = count
    return counts


def count_events_by_type(cursor: sqlite3.Cursor, match_ids: List[str]) -> Dict[str, Dict[str, int]]:
    """{match_id: {"total": n, "goal": n, "assist": n, ...}} for matches with at least one event."""
    counts: Dict[str, Dict[str, int]] = {}
    for chunk in _chunks(match_ids, 200):
        placeholders = ",".join("?" for _ in chunk)
        cursor.execute(
            f"""
            SELECT match_id, event_type, COUNT(*)
            FROM match_events
            WHERE match_id IN ({placeholders})
            GROUP BY match_id, event_type
            """,
            tuple(chunk),
        )
        for match_id, event_type, count in cursor.fetchall():
            per_match = counts.setdefault(match_id, {"total": 0})
            per_match[event_type] = per_match.get(event_type, 0) + count
            per_match["total"] += count
    return counts


def fetch_sanity_metrics(cursor: sqlite3.Cursor) -> Dict[str, int]:
    """Cross-run sanity numbers from player_match_points: total assists, matches with goalie saves."""
    cursor.execute("SELECT COALESCE(SUM(assists), 0) FROM player_match_points WHERE assists IS NOT NULL")
    assists_sum = cursor.fetchone()[0]
    cursor.execute("""
        SELECT COUNT(DISTINCT match_id)
        FROM player_match_points
        WHERE position = 'V' AND saves > 0
    """)
    goalie_matches = cursor.fetchone()[0]
    return {"assists_sum": int(assists_sum or 0), "goalie_match_count_with_saves": int(goalie_matches or 0)}
