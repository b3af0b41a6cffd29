import datetime

import pytest

from floorball_ingest import config
from floorball_ingest.db import init_db
from floorball_ingest.scrapers import scrape_match_protocol
from floorball_ingest.upd_match_events import IngestContext

TODAY = datetime.date.today()

TEAMS = [
    ("t1", "Team A", "TMA", "901"),
    ("t2", "Team B", "TMB", "902"),
]

PLAYERS = [
    ("p1", "J. Berzins", "Team A", "t1", "7"),
    ("p2", "P. Kalns", "Team A", "t1", "11"),
    ("p3", "Jānis Ozols", "Team A", "t1", "1"),
    ("p4", "A. Liepa", "Team B", "t2", "19"),
    ("p5", "M. Egle", "Team B", "t2", "30"),
    # Same name on both rosters
    ("p6", "K. Lapa", "Team A", "t1", "23"),
    ("p7", "K. Lapa", "Team B", "t2", "23"),
]

CLEAN_PROTOCOL_HTML = """
<html><body>
<table>
  <tr><th>Laiks</th><th>Komanda</th><th>Vārti</th><th>Piespēles</th></tr>
  <tr><td>12:34</td><td>Team A</td><td>J. Berzins</td><td>P. Kalns</td></tr>
</table>
<table>
  <tr><th>Nr.</th><th>Spēlētājs</th><th>Poz.</th></tr>
  <tr><td>7</td><td>J. Berzins</td><td>U</td></tr>
</table>
</body></html>
"""

FULL_PROTOCOL_HTML = """
<html><body>
<h2>Spēles protokols</h2>
<table>
  <tr><th>Laiks</th><th>Komanda</th><th>Vārti</th><th>Piespēles</th><th>Per.</th></tr>
  <tr><td>05:10</td><td>Team A</td><td>#7 J. Berzins</td><td>P. Kalns, K. Lapa (PP)</td><td>1</td></tr>
  <tr><td>25:00</td><td>Team B</td><td>A. Liepa</td><td>Team B</td><td>2</td></tr>
  <tr><td>61:30</td><td>Team A</td><td>Unknown Guy</td><td></td><td>OT</td></tr>
</table>
<table>
  <tr><th>Laiks</th><th>Komanda</th><th>Spēlētājs</th><th>Sods</th><th>Min.</th></tr>
  <tr><td>10:00</td><td>Team B</td><td>A. Liepa</td><td>Klupināšana</td><td>2</td></tr>
  <tr><td>30:15</td><td>Team A</td><td>P. Kalns</td><td>Rupjība</td><td>4</td></tr>
</table>
<table>
  <tr><th>Tiesnesis</th><th>Pilsēta</th></tr>
  <tr><td>I. Kalnina</td><td>Rīga</td></tr>
</table>
<p>Vārtsarga stat. #1 Jānis Ozols - vārti: 1; metieni: 20; minūtes: 60:00</p>
<p>Vārtsarga stat. #30 M. Egle - vārti: 1; metieni: 25; minūtes: 58:30</p>
</body></html>
"""


class FakeResponse:
    def __init__(self, status_code=200, text=""):
        self.status_code = status_code
        self.text = text


class FakeSession:
    """Stands in for requests.Session: maps URL to (status, text); unknown URLs answer 404."""

    def __init__(self, pages=None, default_status=404, error=None):
        self.pages = pages or {}
        self.default_status = default_status
        self.error = error
        self.calls = []

    def get(self, url, timeout=None):
        self.calls.append(url)
        if self.error:
            raise self.error
        status, text = self.pages.get(url, (self.default_status, ""))
        return FakeResponse(status, text)


@pytest.fixture(autouse=True)
def no_request_gap(monkeypatch):
    monkeypatch.setattr(scrape_match_protocol, "_wait_for_request_gap", lambda *a, **k: None)


@pytest.fixture(autouse=True)
def clean_env_cache():
    config.reset_env_cache()
    yield
    config.reset_env_cache()


@pytest.fixture
def db():
    conn, cursor = init_db(":memory:")
    yield cursor
    conn.close()


def insert_match(cursor, match_id, external_id, home_score=None, away_score=None,
                 status="finished", date=TODAY, protocol_url=None, season="2025-26"):
    cursor.execute("""
        INSERT INTO matches (id, external_id, protocol_url, home_team, away_team,
                             home_score, away_score, status, season, date)
        VALUES (?, ?, ?, 't1', 't2', ?, ?, ?, ?, ?)
    """, (match_id, external_id, protocol_url, home_score, away_score, status, season, date))
    cursor.connection.commit()


@pytest.fixture
def roster_db(db):
    db.executemany("INSERT INTO teams (id, name, code, external_id) VALUES (?, ?, ?, ?)", TEAMS)
    db.executemany(
        "INSERT INTO players (id, name, team, team_id, jersey_number) VALUES (?, ?, ?, ?, ?)", PLAYERS,
    )
    db.connection.commit()
    insert_match(db, "m1", "12345", home_score=3, away_score=2, date=TODAY - datetime.timedelta(days=3))
    return db


@pytest.fixture
def context(roster_db):
    return IngestContext.build(roster_db)


@pytest.fixture
def protocol_url():
    return config.PROTOCOL_URL_TEMPLATE.format(season_year="2025", numeric_id="12345")

