import pytest

from conftest import CLEAN_PROTOCOL_HTML, FULL_PROTOCOL_HTML, FakeSession, insert_match
from floorball_ingest.errors import IngestError, PersistenceError, SourceUnreachableError
from floorball_ingest.models.match import MatchRow
from floorball_ingest.models.match_event import InsertableEvent, fetch_match_events, replace_match_rows
from floorball_ingest.upd_match_events import ingest_match, ingest_match_step, reingest_by_external_id


def _goalie_rows(cursor, match_id):
    cursor.execute(
        "SELECT player_id, goals_against, shots, saves, minutes_seconds FROM match_goalie_stats WHERE match_id = ? ORDER BY player_id",
        (match_id,),
    )
    return cursor.fetchall()


def test_protocol_url_derived_from_external_id(roster_db, protocol_url):
    match = MatchRow.get_by_id(roster_db, "m1")
    assert match.resolve_protocol_url() == protocol_url

    match.external_id = "12345-B"
    assert match.resolve_protocol_url() == protocol_url

    match.external_id = "x99"
    assert match.resolve_protocol_url() is None


def test_clean_single_match(roster_db, context, protocol_url):
    session = FakeSession(pages={protocol_url: (200, CLEAN_PROTOCOL_HTML)})
    match = MatchRow.get_by_id(roster_db, "m1")

    result = ingest_match(roster_db, match, session, context)

    assert result.status == "done"
    assert result.events_inserted == 2
    rows = fetch_match_events(roster_db, "m1")
    assert [(r["event_type"], r["player_id"], r["team_id"], r["ts_seconds"], r["minute"]) for r in rows] == [
        ("goal", "p1", "t1", 754, 12),
        ("assist", "p2", "t1", 754, 12),
    ]
    assert rows[0]["raw_player"] == "J. Berzins"
    assert rows[0]["raw_team"] == "Team A"


def test_full_protocol(roster_db, context, protocol_url):
    session = FakeSession(pages={protocol_url: (200, FULL_PROTOCOL_HTML)})
    match = MatchRow.get_by_id(roster_db, "m1")

    result = ingest_match(roster_db, match, session, context)

    assert result.events_inserted == 6
    assert result.goalie_inserted == 2
    assert result.unresolved_players == 1

    rows = fetch_match_events(roster_db, "m1")
    assert sorted((r["event_type"], r["player_id"]) for r in rows) == sorted([
        ("goal", "p1"), ("assist", "p2"), ("assist", "p6"),
        ("goal", "p4"),
        ("minor_2", "p4"), ("double_minor", "p2"),
    ])
    penalty = next(r for r in rows if r["event_type"] == "double_minor")
    assert penalty["value"] == 4
    assert _goalie_rows(roster_db, "m1") == [("p3", 1, 20, 19, 3600), ("p5", 1, 25, 24, 3510)]


def test_ingestion_is_idempotent(roster_db, context, protocol_url):
    session = FakeSession(pages={protocol_url: (200, FULL_PROTOCOL_HTML)})
    match = MatchRow.get_by_id(roster_db, "m1")

    ingest_match(roster_db, match, session, context)
    first = fetch_match_events(roster_db, "m1")
    first_goalies = _goalie_rows(roster_db, "m1")
    ingest_match(roster_db, match, session, context)

    assert fetch_match_events(roster_db, "m1") == first
    assert _goalie_rows(roster_db, "m1") == first_goalies


def test_protocol_404_is_skipped_without_write(roster_db, context, protocol_url):
    match = MatchRow.get_by_id(roster_db, "m1")
    ingest_match(roster_db, match, FakeSession(pages={protocol_url: (200, CLEAN_PROTOCOL_HTML)}), context)

    result = ingest_match(roster_db, match, FakeSession(default_status=404), context)

    assert result.status == "skipped"
    assert not result.has_rows
    assert len(fetch_match_events(roster_db, "m1")) == 2


def test_unattributable_protocol_clears_stored_rows(roster_db, context, protocol_url):
    match = MatchRow.get_by_id(roster_db, "m1")
    ingest_match(roster_db, match, FakeSession(pages={protocol_url: (200, FULL_PROTOCOL_HTML)}), context)
    assert len(fetch_match_events(roster_db, "m1")) == 6

    edited = CLEAN_PROTOCOL_HTML.replace("J. Berzins", "Nobody Known").replace("P. Kalns", "Nobody Else")
    result = ingest_match(roster_db, match, FakeSession(pages={protocol_url: (200, edited)}), context)

    assert result.status == "skipped"
    assert result.message == "No persistable rows"
    assert result.unresolved_players == 2
    assert fetch_match_events(roster_db, "m1") == []
    assert _goalie_rows(roster_db, "m1") == []


def test_placeholder_page_replaces_with_empty_set(roster_db, context, protocol_url):
    match = MatchRow.get_by_id(roster_db, "m1")
    ingest_match(roster_db, match, FakeSession(pages={protocol_url: (200, CLEAN_PROTOCOL_HTML)}), context)

    result = ingest_match(roster_db, match, FakeSession(pages={protocol_url: (200, "<html></html>")}), context)

    assert (result.status, result.state) == ("skipped", "persist")
    assert fetch_match_events(roster_db, "m1") == []


def test_missing_protocol_url_aborts(roster_db, context):
    insert_match(roster_db, "m2", "abc")
    match = MatchRow.get_by_id(roster_db, "m2")

    with pytest.raises(IngestError):
        ingest_match(roster_db, match, FakeSession(), context)

    step = ingest_match_step(roster_db, match, FakeSession(), context)
    assert step.ok is False
    assert "Missing protocol URL" in step.message


def test_unreachable_source_fails_step(roster_db, context):
    match = MatchRow.get_by_id(roster_db, "m1")
    with pytest.raises(SourceUnreachableError):
        ingest_match(roster_db, match, FakeSession(default_status=500), context)
    assert ingest_match_step(roster_db, match, FakeSession(default_status=500), context).ok is False


def test_reingest_by_external_id(roster_db, context, protocol_url):
    session = FakeSession(pages={protocol_url: (200, CLEAN_PROTOCOL_HTML)})

    step = reingest_by_external_id(roster_db, "12345", session, context)
    assert step.ok is True
    assert step.data["events_inserted"] == 2

    assert reingest_by_external_id(roster_db, "99999", session, context).ok is False


def test_persist_failure_rolls_back(roster_db):
    good = InsertableEvent(match_id="m1", team_id="t1", player_id="p1", event_type="goal", ts_seconds=754, minute=12)
    replace_match_rows(roster_db, "m1", [good])

    bad = InsertableEvent(match_id="m1", team_id="t1", player_id=None, event_type="goal")
    with pytest.raises(PersistenceError):
        replace_match_rows(roster_db, "m1", [good, bad])

    rows = fetch_match_events(roster_db, "m1")
    assert [(r["player_id"], r["ts_seconds"]) for r in rows] == [("p1", 754)]
