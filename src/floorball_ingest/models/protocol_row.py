# src/floorball_ingest/models/protocol_row.py

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


@dataclass(frozen=True)
class TableSchema:
    """
    Positional layout of one protocol table kind.
    `fields` names the leading cells in order; `header_keywords` classify the table by its header row.
    """
    kind:               str
    fields:             Tuple[str, ...]
    header_keywords:    Tuple[str, ...]

    def cell(self, values: List[str], name: str) -> Optional[str]:
        idx = self.fields.index(name)
        return values[idx] if idx < len(values) else None

    def trailing(self, values: List[str]) -> List[str]:
        """Cells after the named fields (free-text description columns)."""
        return values[len(self.fields):]


# Keywords are matched as substrings of the normalized header row; Latvian stems: varti (goals), piesp (assists).
GOAL_TABLE_SCHEMA = TableSchema(
    kind            = "goal",
    fields          = ("time", "team", "scorer", "assists"),
    header_keywords = ("goal", "goals", "varti", "scorer", "aizs", "assists", "piesp"),
)

# Latvian stems: sods / sodu / sodi (penalty).
PENALTY_TABLE_SCHEMA = TableSchema(
    kind            = "penalty",
    fields          = ("time", "team", "player"),
    header_keywords = ("pen", "sods", "sodu", "pim", "minutes", "min", "sodi"),
)

# Classification order matters: a table matching both keyword sets is a goal table.
TABLE_SCHEMAS: Tuple[TableSchema, ...] = (GOAL_TABLE_SCHEMA, PENALTY_TABLE_SCHEMA)


@dataclass
class ParsedRow:
    team:       Optional[str] = None
    scorer:     Optional[str] = None
    assists:    List[str] = field(default_factory=list)
    time:       Optional[str] = None
    period:     Optional[str] = None


@dataclass
class ParsedPenaltyRow:
    team:           Optional[str] = None
    player:         Optional[str] = None
    minutes:        Optional[int] = None
    time:           Optional[str] = None
    period:         Optional[str] = None
    description:    Optional[str] = None


@dataclass
class GoalieLine:
    raw:                str
    name:               str
    jersey_number:      Optional[str] = None
    goals_against:      Optional[int] = None
    shots:              Optional[int] = None
    minutes_seconds:    Optional[int] = None


@dataclass
class ParsedProtocol:
    goal_rows:      List[ParsedRow] = field(default_factory=list)
    penalty_rows:   List[ParsedPenaltyRow] = field(default_factory=list)
    goalie_lines:   List[GoalieLine] = field(default_factory=list)
    tables_seen:    int = 0
    tables_ignored: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.goal_rows and not self.penalty_rows

    def counts(self) -> Dict[str, int]:
        return {
            "goal_rows":        len(self.goal_rows),
            "penalty_rows":     len(self.penalty_rows),
            "goalie_lines":     len(self.goalie_lines),
            "tables_seen":      self.tables_seen,
            "tables_ignored":   self.tables_ignored,
        }
