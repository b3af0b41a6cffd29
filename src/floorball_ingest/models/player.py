# src/floorball_ingest/models/player.py

from dataclasses import dataclass
import sqlite3
from typing import Any, Dict, List, Optional


@dataclass
class PlayerRow:
    id:             str
    name:           Optional[str] = None
    team:           Optional[str] = None    # team name, used when team_id is missing
    team_id:        Optional[str] = None
    jersey_number:  Optional[str] = None
    external_id:    Optional[str] = None

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "PlayerRow":
        jersey = d.get("jersey_number")
        return PlayerRow(
            id              = d.get("id"),
            name            = d.get("name"),
            team            = d.get("team"),
            team_id         = d.get("team_id"),
            jersey_number   = str(jersey) if jersey is not None else None,
            external_id     = d.get("external_id"),
        )

    @property
    def team_key(self) -> str:
        return self.team_id or self.team or ""

    @classmethod
    def get_all(cls, cursor: sqlite3.Cursor) -> List["PlayerRow"]:
        cursor.execute("SELECT id, name, team, team_id, jersey_number, external_id FROM players")
        columns = [col[0] for col in cursor.description]
        return [cls.from_dict(dict(zip(columns, row))) for row in cursor.fetchall()]
