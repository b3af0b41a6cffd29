# src/floorball_ingest/models/match.py

from dataclasses import dataclass, fields
import datetime
import logging
import re
import sqlite3
from typing import Any, Dict, List, Optional

from floorball_ingest.config import DEFAULT_SEASON, PROTOCOL_URL_TEMPLATE

NUMERIC_EXTERNAL_ID_RE = re.compile(r"^(\d{3,})")


@dataclass
class MatchRow:
    id:             str
    external_id:    Optional[str] = None
    protocol_url:   Optional[str] = None
    home_team:      Optional[str] = None
    away_team:      Optional[str] = None
    home_score:     Optional[int] = None
    away_score:     Optional[int] = None
    status:         Optional[str] = None
    season:         Optional[str] = None
    date:           Optional[datetime.date] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "MatchRow":
        row = cls(**{k: d.get(k) for k in {f.name for f in fields(cls)}})
        # Some sources store the report link under the original column name
        if not row.protocol_url:
            row.protocol_url = d.get("lfs_match_url")
        if isinstance(row.date, str):
            try:
                row.date = datetime.date.fromisoformat(row.date[:10])
            except ValueError:
                row.date = None
        return row

    @property
    def total_goals(self) -> int:
        return (self.home_score or 0) + (self.away_score or 0)

    def has_numeric_external_id(self) -> bool:
        return bool(self.external_id and NUMERIC_EXTERNAL_ID_RE.match(self.external_id))

    def resolve_protocol_url(self) -> Optional[str]:
        """
        Stored protocol URL if present, else derived from the numeric prefix of external_id
        and the season's first year ('2025-26' -> 2025). None if neither is usable.
        """
        if self.protocol_url:
            return self.protocol_url
        if not self.external_id:
            return None
        m = NUMERIC_EXTERNAL_ID_RE.match(self.external_id)
        if not m:
            logging.warning(f"Invalid external_id, missing numeric prefix: {self.external_id}")
            return None
        season_year = (self.season or DEFAULT_SEASON).split("-")[0] or DEFAULT_SEASON.split("-")[0]
        return PROTOCOL_URL_TEMPLATE.format(season_year=season_year, numeric_id=m.group(1))

    @classmethod
    def _query(cls, cursor: sqlite3.Cursor, where: str, params: tuple) -> List["MatchRow"]:
        cursor.execute(f"""
            SELECT id, external_id, protocol_url, home_team, away_team,
                   home_score, away_score, status, season, date
            FROM matches
            WHERE {where}
            ORDER BY date ASC, id ASC
        """, params)
        columns = [col[0] for col in cursor.description]
        return [cls.from_dict(dict(zip(columns, row))) for row in cursor.fetchall()]

    @classmethod
    def get_by_id(cls, cursor: sqlite3.Cursor, match_id: str) -> Optional["MatchRow"]:
        rows = cls._query(cursor, "id = ?", (match_id,))
        return rows[0] if rows else None

    @classmethod
    def get_by_external_id(cls, cursor: sqlite3.Cursor, external_id: str) -> Optional["MatchRow"]:
        rows = cls._query(cursor, "external_id = ?", (external_id,))
        return rows[0] if rows else None

    @classmethod
    def get_finished_for_season(cls, cursor: sqlite3.Cursor, season: str) -> List["MatchRow"]:
        return cls._query(cursor, "status = 'finished' AND season = ?", (season,))

    @classmethod
    def get_finished_since(cls, cursor: sqlite3.Cursor, since: datetime.date) -> List["MatchRow"]:
        return cls._query(cursor, "status = 'finished' AND date >= ?", (since,))
