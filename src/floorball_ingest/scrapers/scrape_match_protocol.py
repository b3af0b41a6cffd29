# src/floorball_ingest/scrapers/scrape_match_protocol.py
#
# Fetches match protocol (report) pages and extracts goal, penalty and goalie rows.
# Uses plain requests/BeautifulSoup (protocol pages are server-rendered).

"""
Context (from manual site walk):
  - Protocol pages live at /lv/<season year>/chempionats/vv/proto/<numeric id>.
  - A page holds several tables: goals, penalties, lineups, officials. Only goal and penalty
    tables are recognised, by keywords in their first row; everything else is ignored.
  - Goal tables read time, team, scorer, assists positionally; an optional "Per." column holds the period.
  - Goalie lines are free text: "vārtsarga stat. #1 Name - vārti: 3; metieni: 25; minūtes: 60:00".
  - Unpublished protocols answer 404.
"""

import logging
import os
import re
import time
from typing import List, Optional

import requests
from bs4 import BeautifulSoup

from floorball_ingest.config import PROTOCOL_CACHE_DIR, REQUEST_MIN_GAP, REQUEST_TIMEOUT
from floorball_ingest.errors import ProtocolNotFoundError, SourceUnreachableError
from floorball_ingest.models.protocol_row import (
    GOAL_TABLE_SCHEMA,
    PENALTY_TABLE_SCHEMA,
    TABLE_SCHEMAS,
    GoalieLine,
    ParsedPenaltyRow,
    ParsedProtocol,
    ParsedRow,
    TableSchema,
)
from floorball_ingest.utils import clean_name, clean_text, normalize_key

ASSIST_SPLIT_RE     = re.compile(r"([,;()+])")
PERIOD_HEADER_RE    = re.compile(r"per", re.IGNORECASE)
MINUTES_HEADER_RE   = re.compile(r"min|pim", re.IGNORECASE)
DIGITS_RE           = re.compile(r"\d+")
CLOCK_RE            = re.compile(r"^\s*\d{1,3}:\d{2}(:\d{2})?\s*$")
GOALIE_LINE_RE      = re.compile(
    r"vārtsarga stat\.?\s*#?(\d{1,3})?\s*([^-]+?)-\s*vārti:\s*(\d+)\s*;\s*metieni:\s*(\d+)\s*;\s*minūtes:\s*(\d{1,3}:\d{2})",
    re.IGNORECASE,
)

_last_request_at = 0.0


# ----------------------------------------------------------------------
# Fetching
# ----------------------------------------------------------------------
def _wait_for_request_gap(min_gap: float = REQUEST_MIN_GAP) -> None:
    global _last_request_at
    elapsed = time.monotonic() - _last_request_at
    if min_gap and elapsed < min_gap:
        time.sleep(min_gap - elapsed)
    _last_request_at = time.monotonic()


def fetch_html(session: requests.Session, url: str, min_gap: float = REQUEST_MIN_GAP) -> str:
    """
    GET a protocol page. Retries with backoff are handled by the session's adapter.
    Raises ProtocolNotFoundError on 404 and SourceUnreachableError on any other failure.
    """
    _wait_for_request_gap(min_gap)
    try:
        resp = session.get(url, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as e:
        raise SourceUnreachableError(f"Request to {url} failed: {e}") from e

    if resp.status_code == 404:
        raise ProtocolNotFoundError(f"Protocol not found (404): {url}")
    if resp.status_code != 200:
        raise SourceUnreachableError(f"Unexpected status {resp.status_code} for {url}")
    return resp.text


def check_source_access(session: requests.Session, url: str) -> bool:
    """Lightweight reachability check of the source site. True only for HTTP 200."""
    try:
        resp = session.get(url, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as e:
        logging.error(f"Source access check failed for {url}: {e}")
        return False
    if resp.status_code != 200:
        logging.error(f"Source access check failed for {url}: status {resp.status_code}")
        return False
    logging.info(f"Source access check OK ({url}, status {resp.status_code})")
    return True


def save_protocol_html(html: str, key: str, cache_dir: str = PROTOCOL_CACHE_DIR) -> Optional[str]:
    """Dump fetched HTML for debugging parser layouts. Returns the written path, or None on failure."""
    path = os.path.join(cache_dir, f"{key}.html")
    try:
        os.makedirs(cache_dir, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(html)
    except OSError as e:
        logging.warning(f"Failed to save protocol HTML to {path}: {e}")
        return None
    logging.debug(f"Saved protocol HTML to {path}")
    return path


# ----------------------------------------------------------------------
# Table classification
# ----------------------------------------------------------------------
def get_header_texts(table) -> List[str]:
    first_row = table.find("tr")
    if not first_row:
        return []
    return [clean_text(c.get_text(" ", strip=True)) for c in first_row.find_all(["th", "td"])]


def classify_table(headers: List[str]) -> Optional[TableSchema]:
    joined = " ".join(normalize_key(h) for h in headers)
    for schema in TABLE_SCHEMAS:
        if any(kw in joined for kw in schema.header_keywords):
            return schema
    return None


def _body_rows(table) -> List[List[str]]:
    rows = []
    for row in table.find_all("tr")[1:]:
        cells = row.find_all("td")
        if not cells:
            continue
        rows.append([clean_text(td.get_text(" ", strip=True)) for td in cells])
    return rows


def _header_index(headers: List[str], pattern: re.Pattern) -> Optional[int]:
    for i, h in enumerate(headers):
        if pattern.search(h):
            return i
    return None


def _value_at(values: List[str], idx: Optional[int]) -> Optional[str]:
    if idx is None or idx >= len(values):
        return None
    return values[idx] or None


# ----------------------------------------------------------------------
# Row extraction
# ----------------------------------------------------------------------
def split_assists(raw: Optional[str]) -> List[str]:
    """
    Split an assists cell into candidate names.
    Text opened by '(' is a situation marker, not a player.
    Example: 'A. Kalns, B. Ozols (PP)' -> ['A. Kalns', 'B. Ozols']
    """
    if not raw:
        return []
    names: List[str] = []
    delimiter = None
    for part in ASSIST_SPLIT_RE.split(raw):
        if len(part) == 1 and ASSIST_SPLIT_RE.fullmatch(part):
            delimiter = part
            continue
        name = clean_name(part)
        if name and delimiter != "(":
            names.append(name)
    return names


def parse_goal_rows(table, headers: List[str], schema: TableSchema = GOAL_TABLE_SCHEMA) -> List[ParsedRow]:
    period_idx = _header_index(headers, PERIOD_HEADER_RE)
    rows: List[ParsedRow] = []
    for values in _body_rows(table):
        scorer = schema.cell(values, "scorer")
        rows.append(ParsedRow(
            team    = schema.cell(values, "team") or None,
            scorer  = clean_name(scorer) or None,
            assists = split_assists(schema.cell(values, "assists")),
            time    = schema.cell(values, "time") or None,
            period  = _value_at(values, period_idx),
        ))
    return rows


def _penalty_minutes(values: List[str], headers: List[str], schema: TableSchema) -> Optional[int]:
    # Prefer an explicit minutes column; else the first non-clock cell after the named fields with a number.
    idx = _header_index(headers, MINUTES_HEADER_RE)
    candidates = [_value_at(values, idx)] if idx is not None and idx >= len(schema.fields) else []
    candidates += schema.trailing(values)
    for cell in candidates:
        if not cell or CLOCK_RE.match(cell):
            continue
        m = DIGITS_RE.search(cell)
        if m:
            return int(m.group(0))
    return None


def parse_penalty_rows(table, headers: List[str], schema: TableSchema = PENALTY_TABLE_SCHEMA) -> List[ParsedPenaltyRow]:
    period_idx = _header_index(headers, PERIOD_HEADER_RE)
    rows: List[ParsedPenaltyRow] = []
    for values in _body_rows(table):
        player = schema.cell(values, "player")
        rows.append(ParsedPenaltyRow(
            team        = schema.cell(values, "team") or None,
            player      = clean_name(player) or None,
            minutes     = _penalty_minutes(values, headers, schema),
            time        = schema.cell(values, "time") or None,
            period      = _value_at(values, period_idx),
            description = " ".join(v for v in schema.trailing(values) if v).strip() or None,
        ))
    return rows


def parse_goalie_lines(text: str) -> List[GoalieLine]:
    lines: List[GoalieLine] = []
    for m in GOALIE_LINE_RE.finditer(clean_text(text)):
        name = clean_text(m.group(2))
        if not name:
            continue
        mins, secs = m.group(5).split(":")
        lines.append(GoalieLine(
            raw             = m.group(0),
            name            = name,
            jersey_number   = m.group(1),
            goals_against   = int(m.group(3)),
            shots           = int(m.group(4)),
            minutes_seconds = int(mins) * 60 + int(secs),
        ))
    if not lines and "vārtsarga stat" in text.lower():
        logging.warning("Goalie stat text present but no line matched the expected format")
    return lines


def parse_protocol(html: str) -> ParsedProtocol:
    """
    Scan every table, classify it by its header row and extract rows.
    Unclassified tables (lineups, officials, ...) are skipped without error.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    parsed = ParsedProtocol()

    for table in soup.find_all("table"):
        parsed.tables_seen += 1
        headers = get_header_texts(table)
        schema = classify_table(headers) if headers else None
        if schema is GOAL_TABLE_SCHEMA:
            parsed.goal_rows.extend(parse_goal_rows(table, headers, schema))
        elif schema is PENALTY_TABLE_SCHEMA:
            parsed.penalty_rows.extend(parse_penalty_rows(table, headers, schema))
        else:
            parsed.tables_ignored += 1

    parsed.goalie_lines = parse_goalie_lines(soup.get_text(" "))
    return parsed
