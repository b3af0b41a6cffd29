# src/floorball_ingest/models/team.py

from dataclasses import dataclass
import sqlite3
from typing import Any, Dict, List, Optional


@dataclass
class TeamRow:
    id:             str
    name:           Optional[str] = None
    code:           Optional[str] = None
    external_id:    Optional[str] = None

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "TeamRow":
        return TeamRow(
            id          = d.get("id"),
            name        = d.get("name"),
            code        = d.get("code"),
            external_id = d.get("external_id"),
        )

    @classmethod
    def get_all(cls, cursor: sqlite3.Cursor) -> List["TeamRow"]:
        cursor.execute("SELECT id, name, code, external_id FROM teams")
        columns = [col[0] for col in cursor.description]
        return [cls.from_dict(dict(zip(columns, row))) for row in cursor.fetchall()]
