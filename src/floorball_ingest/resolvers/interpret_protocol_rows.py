# src/floorball_ingest/resolvers/interpret_protocol_rows.py

import re
from typing import Iterable, List, Optional, Set

from floorball_ingest.models.match_event import ParsedEvent
from floorball_ingest.models.protocol_row import ParsedPenaltyRow, ParsedRow
from floorball_ingest.models.team import TeamRow
from floorball_ingest.utils import normalize_key

DOUBLE_MINOR_MIN_MINUTES = 4

# Assist cells sometimes carry game-situation text instead of a second assistant
NON_PLAYER_ASSIST_PHRASES = (
    "aizturēta soda laikā",         # delayed penalty
    "vienādos nepilnos sastāvos",   # equal short-handed
)


def parse_time_to_seconds(text: Optional[str]) -> Optional[int]:
    """
    '12:34' -> 754, '1:02:03' -> 3723, anything else -> None.
    Characters other than digits and ':' are ignored ('12:34 min' == '12:34').
    """
    if not text:
        return None
    parts = re.sub(r"[^0-9:]", "", text).split(":")
    if not all(p.isdigit() for p in parts):
        return None
    if len(parts) == 2:
        mm, ss = (int(p) for p in parts)
        return mm * 60 + ss
    if len(parts) == 3:
        hh, mm, ss = (int(p) for p in parts)
        return hh * 3600 + mm * 60 + ss
    return None


def parse_period(text: Optional[str]) -> Optional[int]:
    """Digits are the period; overtime is 4 and shootout is 5."""
    if text is None:
        return None
    digits = re.sub(r"\D", "", text)
    if digits:
        return int(digits)
    key = normalize_key(text)
    if "ot" in key:
        return 4
    if "so" in key:
        return 5
    return None


def penalty_event_type(minutes: Optional[int]) -> str:
    if minutes is not None and minutes >= DOUBLE_MINOR_MIN_MINUTES:
        return "double_minor"
    return "minor_2"


def build_non_player_assist_keys(teams: Iterable[TeamRow]) -> Set[str]:
    """Normalized texts that can appear in an assist cell without naming a player."""
    keys = {normalize_key(p) for p in NON_PLAYER_ASSIST_PHRASES}
    for team in teams:
        for value in (team.name, team.code):
            key = normalize_key(value)
            if key:
                keys.add(key)
    return keys


def _clock(time_text: Optional[str]):
    ts = parse_time_to_seconds(time_text)
    minute = ts // 60 if ts is not None else None
    return ts, minute


def to_parsed_events(
    goal_rows:          List[ParsedRow],
    penalty_rows:       List[ParsedPenaltyRow],
    non_player_keys:    Optional[Set[str]] = None,
) -> List[ParsedEvent]:
    """
    One goal per row with a scorer, one assist per assist name, one penalty per penalty row.
    Events of one row share its clock and period.
    """
    non_player_keys = non_player_keys or set()
    events: List[ParsedEvent] = []

    for row in goal_rows:
        ts, minute = _clock(row.time)
        period = parse_period(row.period)
        if row.scorer:
            events.append(ParsedEvent(
                event_type  = "goal",
                raw_team    = row.team,
                raw_player  = row.scorer,
                ts_seconds  = ts,
                minute      = minute,
                period      = period,
            ))
        for name in row.assists:
            if not name or normalize_key(name) in non_player_keys:
                continue
            events.append(ParsedEvent(
                event_type  = "assist",
                raw_team    = row.team,
                raw_player  = name,
                ts_seconds  = ts,
                minute      = minute,
                period      = period,
            ))

    for row in penalty_rows:
        ts, minute = _clock(row.time)
        events.append(ParsedEvent(
            event_type  = penalty_event_type(row.minutes),
            raw_team    = row.team,
            raw_player  = row.player,
            ts_seconds  = ts,
            minute      = minute,
            period      = parse_period(row.period),
            value       = row.minutes,
        ))

    return events
