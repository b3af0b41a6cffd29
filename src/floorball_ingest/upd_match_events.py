# src/floorball_ingest/upd_match_events.py
#
# Single-match ingestion: fetch → parse → resolve → persist.
# CLI: ingest-match --matchId <id> | --externalId <id>

import argparse
from dataclasses import dataclass, field
import json
import logging
import sqlite3
from typing import Any, Dict, List, Optional, Set

import requests

from floorball_ingest.config import get_env
from floorball_ingest.db import init_db
from floorball_ingest.errors import IngestError, MatchNotFoundError, ProtocolNotFoundError
from floorball_ingest.external_steps import StepResult
from floorball_ingest.models.match import MatchRow
from floorball_ingest.models.match_event import replace_match_rows
from floorball_ingest.models.player import PlayerRow
from floorball_ingest.models.team import TeamRow
from floorball_ingest.resolvers.entity_lookup import (
    PlayerLookup,
    ResolutionStats,
    TeamLookup,
    build_player_lookup,
    build_player_team_map,
    build_team_lookup,
)
from floorball_ingest.resolvers.interpret_protocol_rows import build_non_player_assist_keys, to_parsed_events
from floorball_ingest.resolvers.resolve_match_events import materialize, materialize_goalie_stats
from floorball_ingest.scrapers.scrape_match_protocol import fetch_html, parse_protocol, save_protocol_html
from floorball_ingest.utils import init_session, setup_logging

UNRESOLVED_SAMPLE_SIZE = 5


@dataclass
class IngestContext:
    """Read-only lookups shared by every match of one run. Built once, never updated mid-run."""
    team_lookup:        TeamLookup
    player_lookup:      PlayerLookup
    player_teams:       Dict[str, str] = field(default_factory=dict)
    non_player_keys:    Set[str] = field(default_factory=set)
    stats:              ResolutionStats = field(default_factory=ResolutionStats)
    save_html:          bool = False

    @classmethod
    def build(cls, cursor: sqlite3.Cursor, save_html: bool = False) -> "IngestContext":
        teams = TeamRow.get_all(cursor)
        players = PlayerRow.get_all(cursor)
        return cls(
            team_lookup     = build_team_lookup(teams),
            player_lookup   = build_player_lookup(players),
            player_teams    = build_player_team_map(players),
            non_player_keys = build_non_player_assist_keys(teams),
            save_html       = save_html,
        )


@dataclass
class IngestResult:
    match_id:               str
    external_id:            Optional[str]
    status:                 str             # done | skipped
    state:                  str             # last state reached: fetch | parse | resolve | persist
    message:                str = ""
    parsed:                 Dict[str, int] = field(default_factory=dict)
    events_inserted:        int = 0
    goalie_inserted:        int = 0
    unresolved_teams:       int = 0
    unresolved_players:     int = 0

    @property
    def has_rows(self) -> bool:
        return bool(self.events_inserted or self.goalie_inserted)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "match_id":             self.match_id,
            "external_id":          self.external_id,
            "status":               self.status,
            "state":                self.state,
            "message":              self.message,
            "parsed":               self.parsed,
            "events_inserted":      self.events_inserted,
            "goalie_inserted":      self.goalie_inserted,
            "unresolved_teams":     self.unresolved_teams,
            "unresolved_players":   self.unresolved_players,
        }


def _sample_names(events, limit: int = UNRESOLVED_SAMPLE_SIZE) -> List[str]:
    return [f"{e.event_type}: {e.raw_player or '?'} ({e.raw_team or '?'})" for e in events[:limit]]


def ingest_match(
    cursor:     sqlite3.Cursor,
    match:      MatchRow,
    session:    requests.Session,
    context:    IngestContext,
) -> IngestResult:
    """
    Ingest one match protocol and replace the match's stored events and goalie stats.

    Raises IngestError when the match has no usable protocol URL, SourceUnreachableError when the
    page cannot be fetched and PersistenceError when the store write fails. A 404 page returns a
    'skipped' result and leaves stored rows untouched. A fetched protocol always replaces the
    stored rows; when nothing in it is attributable the match ends up empty and is reported 'skipped'.
    """
    result = IngestResult(match_id=match.id, external_id=match.external_id, status="done", state="fetch")

    # Fetch
    # =============================================================================
    url = match.resolve_protocol_url()
    if not url:
        raise IngestError(f"Missing protocol URL for match {match.id} (external_id: {match.external_id})")
    try:
        html = fetch_html(session, url)
    except ProtocolNotFoundError as e:
        logging.warning(f"Match {match.id}: {e}")
        result.status, result.message = "skipped", "Protocol not found (404)"
        return result
    if context.save_html:
        save_protocol_html(html, match.external_id or match.id)

    # Parse
    # =============================================================================
    result.state = "parse"
    parsed = parse_protocol(html)
    result.parsed = parsed.counts()
    if parsed.is_empty:
        logging.warning(f"Match {match.id}: no goal or penalty rows found in protocol ({url})")

    # Resolve
    # =============================================================================
    result.state = "resolve"
    events = to_parsed_events(parsed.goal_rows, parsed.penalty_rows, context.non_player_keys)
    materialized = materialize(
        match.id, events, context.team_lookup, context.player_lookup, context.stats, context.player_teams,
    )
    goalie_rows, unresolved_goalies = materialize_goalie_stats(
        match.id, parsed.goalie_lines, context.player_lookup, context.stats, context.player_teams,
        team_ids=(match.home_team, match.away_team),
    )
    result.unresolved_teams = len(materialized.unresolved_teams)
    result.unresolved_players = len(materialized.unresolved_players) + len(unresolved_goalies)

    if materialized.unresolved_teams:
        logging.warning(
            f"Match {match.id}: {len(materialized.unresolved_teams)} events with unresolved team, "
            f"e.g. {_sample_names(materialized.unresolved_teams)}"
        )
    if materialized.unresolved_players:
        logging.warning(
            f"Match {match.id}: {len(materialized.unresolved_players)} events with unresolved player, "
            f"e.g. {_sample_names(materialized.unresolved_players)}"
        )
    if unresolved_goalies:
        logging.warning(
            f"Match {match.id}: {len(unresolved_goalies)} unresolved goalie lines, "
            f"e.g. {[g.name for g in unresolved_goalies[:UNRESOLVED_SAMPLE_SIZE]]}"
        )

    # Persist
    # =============================================================================
    result.state = "persist"
    result.events_inserted, result.goalie_inserted = replace_match_rows(
        cursor, match.id, materialized.persistable, goalie_rows,
    )
    if not result.has_rows:
        logging.warning(f"Match {match.id}: nothing to persist, stored rows cleared")
        result.status, result.message = "skipped", "No persistable rows"
        return result
    result.message = f"Inserted {result.events_inserted} events, {result.goalie_inserted} goalie rows"
    logging.info(f"Match {match.id} ({match.external_id}): {result.message}")
    return result


def ingest_match_step(
    cursor:     sqlite3.Cursor,
    match:      MatchRow,
    session:    requests.Session,
    context:    IngestContext,
) -> StepResult:
    """ingest_match wrapped into an exit-code-shaped result; IngestError becomes ok=False."""
    try:
        result = ingest_match(cursor, match, session, context)
    except IngestError as e:
        logging.error(f"Ingestion failed for match {match.id} ({match.external_id}): {e}")
        return StepResult(False, str(e), {"match_id": match.id, "external_id": match.external_id})
    return StepResult(True, result.message, result.as_dict())


def reingest_by_external_id(
    cursor:         sqlite3.Cursor,
    external_id:    str,
    session:        requests.Session,
    context:        IngestContext,
) -> StepResult:
    match = MatchRow.get_by_external_id(cursor, external_id)
    if not match:
        return StepResult(False, f"No match with external_id {external_id}")
    return ingest_match_step(cursor, match, session, context)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Ingest the protocol of one match into match_events")
    target = p.add_mutually_exclusive_group(required=True)
    target.add_argument("--matchId", dest="match_id", help="Internal match id")
    target.add_argument("--externalId", dest="external_id", help="Source (external) match id")
    return p.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging()

    conn = None
    try:
        env = get_env()
        conn, cursor = init_db(env.db_name)

        if args.match_id:
            match = MatchRow.get_by_id(cursor, args.match_id)
        else:
            match = MatchRow.get_by_external_id(cursor, args.external_id)
        if not match:
            raise MatchNotFoundError(f"Match not found: {args.match_id or args.external_id}")

        session = init_session(env.user_agent, env.cookie)
        context = IngestContext.build(cursor, save_html=env.debug_save_html)
        result = ingest_match(cursor, match, session, context)

        summary = {**result.as_dict(), "resolution": context.stats.as_dict()}
        print(json.dumps(summary, ensure_ascii=False, indent=2, default=str))
        return 0

    except IngestError as e:
        logging.error(f"ingest-match failed: {e}")
        return 1
    except Exception as e:
        logging.error(f"Unexpected error in ingest-match: {e}", exc_info=True)
        return 1
    finally:
        if conn:
            conn.close()


if __name__ == "__main__":
    raise SystemExit(main())
