# src/floorball_ingest/resolvers/resolve_match_events.py

from dataclasses import dataclass, field
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from floorball_ingest.models.match_event import GoalieStatRow, InsertableEvent, ParsedEvent
from floorball_ingest.models.protocol_row import GoalieLine
from floorball_ingest.resolvers.entity_lookup import (
    PlayerLookup,
    ResolutionStats,
    TeamLookup,
    resolve_player_id,
    resolve_player_in_teams,
    resolve_team_id,
)


@dataclass
class MaterializedEvents:
    rows:                   List[InsertableEvent] = field(default_factory=list)    # every candidate, resolved or not
    persistable:            List[InsertableEvent] = field(default_factory=list)    # player-attributed, de-duplicated
    unresolved_teams:       List[ParsedEvent] = field(default_factory=list)
    unresolved_players:     List[ParsedEvent] = field(default_factory=list)
    duplicates:             int = 0

    def counts(self) -> Dict[str, int]:
        return {
            "candidates":           len(self.rows),
            "persistable":          len(self.persistable),
            "unresolved_teams":     len(self.unresolved_teams),
            "unresolved_players":   len(self.unresolved_players),
            "duplicates":           self.duplicates,
        }


def materialize(
    match_id:       str,
    events:         List[ParsedEvent],
    team_lookup:    TeamLookup,
    player_lookup:  PlayerLookup,
    stats:          Optional[ResolutionStats] = None,
    player_teams:   Optional[Dict[str, str]] = None,
) -> MaterializedEvents:
    """
    Resolve team then player for every event and build insertable rows.
    Rows without a player id are kept in `rows` and the diagnostics, never in `persistable`.
    """
    player_teams = player_teams or {}
    result = MaterializedEvents()
    seen = set()

    for ev in events:
        team_id = resolve_team_id(team_lookup, ev.raw_team)
        player_id = resolve_player_id(player_lookup, team_id, ev.raw_player, stats)

        if ev.raw_team and not team_id:
            result.unresolved_teams.append(ev)
        if not player_id:
            result.unresolved_players.append(ev)

        row = InsertableEvent(
            match_id    = match_id,
            team_id     = team_id or player_teams.get(player_id),
            player_id   = player_id,
            event_type  = ev.event_type,
            ts_seconds  = ev.ts_seconds,
            minute      = ev.minute,
            period      = ev.period,
            value       = ev.value,
            raw_player  = ev.raw_player or "",
            raw_team    = ev.raw_team or "",
        )
        result.rows.append(row)

        if not row.is_persistable():
            continue
        key = row.dedupe_key()
        if key in seen:
            result.duplicates += 1
            continue
        seen.add(key)
        result.persistable.append(row)

    if result.duplicates:
        logging.info(f"Match {match_id}: dropped {result.duplicates} duplicate event rows")
    return result


def materialize_goalie_stats(
    match_id:       str,
    lines:          List[GoalieLine],
    player_lookup:  PlayerLookup,
    stats:          Optional[ResolutionStats] = None,
    player_teams:   Optional[Dict[str, str]] = None,
    team_ids:       Sequence[Optional[str]] = (),
) -> Tuple[List[GoalieStatRow], List[GoalieLine]]:
    """
    Goalie lines carry no team, so names are searched on the two match rosters (team_ids) and
    only then across every team.
    One row per goalie; when a goalie appears twice the line with the longest time wins.
    Returns (rows, unresolved_lines).
    """
    player_teams = player_teams or {}
    by_player: Dict[str, GoalieStatRow] = {}
    unresolved: List[GoalieLine] = []

    for line in lines:
        player_id = resolve_player_in_teams(player_lookup, team_ids, line.name, stats)
        if not player_id:
            unresolved.append(line)
            continue

        goals_against = line.goals_against or 0
        shots = line.shots or 0
        row = GoalieStatRow(
            match_id        = match_id,
            player_id       = player_id,
            team_id         = player_teams.get(player_id),
            goals_against   = line.goals_against,
            shots           = line.shots,
            saves           = max(shots - goals_against, 0),
            minutes_seconds = line.minutes_seconds,
            raw_player      = line.name,
        )
        current = by_player.get(player_id)
        if current is None or (row.minutes_seconds or 0) > (current.minutes_seconds or 0):
            by_player[player_id] = row

    return list(by_player.values()), unresolved
