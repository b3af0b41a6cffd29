import pytest

from conftest import PLAYERS, TEAMS
from floorball_ingest.models.match_event import ParsedEvent
from floorball_ingest.models.player import PlayerRow
from floorball_ingest.models.protocol_row import GoalieLine, ParsedPenaltyRow, ParsedRow
from floorball_ingest.models.team import TeamRow
from floorball_ingest.resolvers.entity_lookup import (
    ResolutionStats,
    build_player_lookup,
    build_player_team_map,
    build_team_lookup,
    resolve_player_id,
    resolve_team_id,
)
from floorball_ingest.resolvers.interpret_protocol_rows import (
    build_non_player_assist_keys,
    parse_period,
    parse_time_to_seconds,
    to_parsed_events,
)
from floorball_ingest.resolvers.resolve_match_events import materialize, materialize_goalie_stats

TEAM_ROWS = [TeamRow(id=t[0], name=t[1], code=t[2], external_id=t[3]) for t in TEAMS]
PLAYER_ROWS = [PlayerRow(id=p[0], name=p[1], team=p[2], team_id=p[3], jersey_number=p[4]) for p in PLAYERS]


@pytest.mark.parametrize("text, expected", [
    ("12:34", 754),
    ("1:02:03", 3723),
    ("00:00", 0),
    ("12:34 min", 754),
    ("garbage", None),
    ("12", None),
    ("1:2:3:4", None),
    ("", None),
    (None, None),
])
def test_parse_time_to_seconds(text, expected):
    assert parse_time_to_seconds(text) == expected


@pytest.mark.parametrize("text, expected", [
    ("3", 3),
    ("2.", 2),
    ("OT", 4),
    ("ot", 4),
    ("SO", 5),
    ("", None),
    ("-", None),
    (None, None),
])
def test_parse_period(text, expected):
    assert parse_period(text) == expected


def test_goal_row_yields_goal_and_assists_with_shared_clock():
    rows = [ParsedRow(team="Team A", scorer="J. Berzins", assists=["P. Kalns", "K. Lapa"], time="12:34", period="2")]
    events = to_parsed_events(rows, [])

    assert [(e.event_type, e.raw_player) for e in events] == [
        ("goal", "J. Berzins"), ("assist", "P. Kalns"), ("assist", "K. Lapa"),
    ]
    assert {(e.ts_seconds, e.minute, e.period) for e in events} == {(754, 12, 2)}


def test_goal_row_without_scorer_yields_no_goal():
    events = to_parsed_events([ParsedRow(team="Team A", scorer=None, assists=["P. Kalns"], time="01:00")], [])
    assert [e.event_type for e in events] == ["assist"]


def test_unparseable_time_gives_null_clock():
    events = to_parsed_events([ParsedRow(team="Team A", scorer="J. Berzins", time="??")], [])
    assert (events[0].ts_seconds, events[0].minute) == (None, None)


@pytest.mark.parametrize("minutes, expected", [(2, "minor_2"), (4, "double_minor"), (10, "double_minor"), (None, "minor_2")])
def test_penalty_typing(minutes, expected):
    events = to_parsed_events([], [ParsedPenaltyRow(team="Team B", player="A. Liepa", minutes=minutes, time="10:00")])
    assert len(events) == 1
    assert events[0].event_type == expected
    assert events[0].value == minutes


def test_non_player_assists_are_dropped():
    keys = build_non_player_assist_keys(TEAM_ROWS)
    rows = [ParsedRow(team="Team B", scorer="A. Liepa", assists=["Team B", "TMA", "Aizturēta soda laikā", "M. Egle"])]
    events = to_parsed_events(rows, [], keys)
    assert [(e.event_type, e.raw_player) for e in events] == [("goal", "A. Liepa"), ("assist", "M. Egle")]


def test_team_lookup_indexes_name_code_and_external_id():
    lookup = build_team_lookup(TEAM_ROWS)
    assert resolve_team_id(lookup, "team a") == "t1"
    assert resolve_team_id(lookup, "TMB") == "t2"
    assert resolve_team_id(lookup, "901") == "t1"
    assert resolve_team_id(lookup, "Team C") is None
    assert resolve_team_id(lookup, None) is None


def test_player_resolution_prefers_team_roster():
    lookup = build_player_lookup(PLAYER_ROWS)
    stats = ResolutionStats()

    assert resolve_player_id(lookup, "t2", "k. lapa", stats) == "p7"
    assert stats.team_hits == 1
    assert stats.fallback_attempts == 0


def test_player_resolution_falls_back_to_unique_global_match():
    lookup = build_player_lookup(PLAYER_ROWS)
    stats = ResolutionStats()

    assert resolve_player_id(lookup, None, "Janis Ozols", stats) == "p3"
    # Wrong team: name absent there but unique elsewhere
    assert resolve_player_id(lookup, "t2", "P. Kalns", stats) == "p2"
    assert stats.as_dict()["fallback_hits"] == 2
    assert stats.fallback_ratio == 1.0


def test_ambiguous_player_is_not_guessed():
    lookup = build_player_lookup(PLAYER_ROWS)
    stats = ResolutionStats()

    assert resolve_player_id(lookup, None, "K. Lapa", stats) is None
    assert stats.ambiguous == 1
    assert resolve_player_id(lookup, None, "Nobody", stats) is None
    assert stats.misses == 1
    assert stats.fallback_ratio == 0.0


def test_materialize_drops_unresolved_player_but_reports_it():
    team_lookup = build_team_lookup(TEAM_ROWS)
    player_lookup = build_player_lookup(PLAYER_ROWS)
    events = [
        ParsedEvent("goal", raw_team="Team A", raw_player="J. Berzins", ts_seconds=754, minute=12),
        ParsedEvent("goal", raw_team="Team A", raw_player="Unknown Guy", ts_seconds=800, minute=13),
        ParsedEvent("minor_2", raw_team="Team X", raw_player="A. Liepa", ts_seconds=900, minute=15, value=2),
    ]

    result = materialize("m1", events, team_lookup, player_lookup, player_teams=build_player_team_map(PLAYER_ROWS))

    assert len(result.rows) == 3
    assert [r.player_id for r in result.persistable] == ["p1", "p4"]
    assert [e.raw_player for e in result.unresolved_players] == ["Unknown Guy"]
    assert [e.raw_team for e in result.unresolved_teams] == ["Team X"]

    unresolved_row = result.rows[1]
    assert (unresolved_row.team_id, unresolved_row.player_id, unresolved_row.raw_player) == ("t1", None, "Unknown Guy")
    # Team taken from the player when the raw team text is unknown
    assert result.persistable[1].team_id == "t2"
    assert result.persistable[1].raw_team == "Team X"


def test_materialize_dedupes_identical_events():
    team_lookup = build_team_lookup(TEAM_ROWS)
    player_lookup = build_player_lookup(PLAYER_ROWS)
    ev = ParsedEvent("goal", raw_team="Team A", raw_player="J. Berzins", ts_seconds=754, minute=12, period=1)

    result = materialize("m1", [ev, ev], team_lookup, player_lookup)

    assert len(result.persistable) == 1
    assert result.duplicates == 1


def test_goalie_stats_keep_longest_line_per_player():
    player_lookup = build_player_lookup(PLAYER_ROWS)
    lines = [
        GoalieLine(raw="", name="M. Egle", goals_against=1, shots=10, minutes_seconds=1200),
        GoalieLine(raw="", name="M. Egle", goals_against=2, shots=25, minutes_seconds=3600),
        GoalieLine(raw="", name="K. Lapa", goals_against=0, shots=3, minutes_seconds=300),
    ]

    rows, unresolved = materialize_goalie_stats("m1", lines, player_lookup, player_teams=build_player_team_map(PLAYER_ROWS))

    assert len(rows) == 1
    row = rows[0]
    assert (row.player_id, row.team_id, row.goals_against, row.shots, row.saves, row.minutes_seconds) == (
        "p5", "t2", 2, 25, 23, 3600,
    )
    assert [u.name for u in unresolved] == ["K. Lapa"]


def test_goalie_resolution_prefers_match_rosters():
    rows = PLAYER_ROWS + [PlayerRow(id="p8", name="M. Egle", team="Team C", team_id="t3", jersey_number="1")]
    player_lookup = build_player_lookup(rows)
    stats = ResolutionStats()
    lines = [
        GoalieLine(raw="", name="M. Egle", goals_against=2, shots=20, minutes_seconds=3600),
        GoalieLine(raw="", name="K. Lapa", goals_against=0, shots=3, minutes_seconds=300),
    ]

    resolved, unresolved = materialize_goalie_stats(
        "m1", lines, player_lookup, stats, build_player_team_map(rows), team_ids=("t1", "t2"),
    )

    assert [(r.player_id, r.team_id) for r in resolved] == [("p5", "t2")]
    assert [u.name for u in unresolved] == ["K. Lapa"]
    assert (stats.team_hits, stats.ambiguous, stats.fallback_attempts) == (1, 1, 0)

    # Outside the match rosters the name is on two teams and is not guessed
    resolved, unresolved = materialize_goalie_stats("m1", lines[:1], player_lookup, team_ids=("t9",))
    assert resolved == [] and [u.name for u in unresolved] == ["M. Egle"]
