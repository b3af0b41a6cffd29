# src/floorball_ingest/resolvers/entity_lookup.py

from dataclasses import dataclass
import logging
from typing import Dict, Iterable, Optional, Sequence

from floorball_ingest.models.player import PlayerRow
from floorball_ingest.models.team import TeamRow
from floorball_ingest.utils import normalize_key

TeamLookup = Dict[str, str]                 # normalized name/code/external id → team id
PlayerLookup = Dict[str, Dict[str, str]]    # normalized team key → normalized player name → player id


@dataclass
class ResolutionStats:
    """How player names were resolved during a run: on the team roster or through the global fallback."""
    team_hits:          int = 0
    fallback_attempts:  int = 0
    fallback_hits:      int = 0
    ambiguous:          int = 0
    misses:             int = 0

    @property
    def fallback_ratio(self) -> Optional[float]:
        """Share of fallback attempts that found a unique player; None before any attempt."""
        if not self.fallback_attempts:
            return None
        return round(self.fallback_hits / self.fallback_attempts, 3)

    def as_dict(self) -> Dict:
        return {
            "team_hits":            self.team_hits,
            "fallback_attempts":    self.fallback_attempts,
            "fallback_hits":        self.fallback_hits,
            "ambiguous":            self.ambiguous,
            "misses":               self.misses,
            "fallback_ratio":       self.fallback_ratio,
        }


def build_team_lookup(teams: Iterable[TeamRow]) -> TeamLookup:
    """
    Index each team under its normalized name, code and external id.
    A key shared by two teams keeps the last one and is logged.
    """
    lookup: TeamLookup = {}
    for team in teams:
        for value in (team.name, team.code, team.external_id):
            key = normalize_key(value)
            if not key:
                continue
            if key in lookup and lookup[key] != team.id:
                logging.warning(f"Team key '{key}' conflicts between teams {lookup[key]} and {team.id}")
            lookup[key] = team.id
    logging.info(f"Built team lookup with {len(lookup)} keys")
    return lookup


def build_player_lookup(players: Iterable[PlayerRow]) -> PlayerLookup:
    lookup: PlayerLookup = {}
    count = 0
    for player in players:
        team_key = normalize_key(player.team_key)
        name_key = normalize_key(player.name)
        if not name_key:
            continue
        lookup.setdefault(team_key, {})[name_key] = player.id
        count += 1
    logging.info(f"Built player lookup with {count} players across {len(lookup)} teams")
    return lookup


def build_player_team_map(players: Iterable[PlayerRow]) -> Dict[str, str]:
    """player id → team id, for players with a known team id."""
    return {p.id: p.team_id for p in players if p.id and p.team_id}


def resolve_team_id(lookup: TeamLookup, raw_text: Optional[str]) -> Optional[str]:
    key = normalize_key(raw_text)
    if not key:
        return None
    return lookup.get(key)


def resolve_player_id(
    lookup:     PlayerLookup,
    team_id:    Optional[str],
    raw_name:   Optional[str],
    stats:      Optional[ResolutionStats] = None,
) -> Optional[str]:
    """
    Team roster first; otherwise accept a name only if exactly one team's roster holds it.
    Ambiguous or unknown names return None.
    """
    stats = stats if stats is not None else ResolutionStats()
    name_key = normalize_key(raw_name)
    if not name_key:
        stats.misses += 1
        return None

    if team_id:
        player_id = lookup.get(normalize_key(team_id), {}).get(name_key)
        if player_id:
            stats.team_hits += 1
            return player_id

    stats.fallback_attempts += 1
    matches = [roster[name_key] for roster in lookup.values() if name_key in roster]
    if len(matches) == 1:
        stats.fallback_hits += 1
        return matches[0]
    if matches:
        stats.ambiguous += 1
        logging.debug(f"Ambiguous player name '{raw_name}' found on {len(matches)} rosters")
    else:
        stats.misses += 1
    return None


def resolve_player_in_teams(
    lookup:     PlayerLookup,
    team_ids:   Sequence[Optional[str]],
    raw_name:   Optional[str],
    stats:      Optional[ResolutionStats] = None,
) -> Optional[str]:
    """
    Search only the given teams' rosters (the two sides of a match). A name on exactly one of
    them resolves; a name on both is ambiguous; a name on neither goes to resolve_player_id's
    cross-team search.
    """
    stats = stats if stats is not None else ResolutionStats()
    name_key = normalize_key(raw_name)
    team_keys = {normalize_key(t) for t in team_ids if t}
    matches = [lookup[k][name_key] for k in team_keys if name_key and name_key in lookup.get(k, {})]
    if len(matches) == 1:
        stats.team_hits += 1
        return matches[0]
    if matches:
        stats.ambiguous += 1
        logging.debug(f"Player name '{raw_name}' found on both match rosters")
        return None
    return resolve_player_id(lookup, None, raw_name, stats)
