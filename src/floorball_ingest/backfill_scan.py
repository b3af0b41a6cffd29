# src/floorball_ingest/backfill_scan.py
#
# Reconciliation scan: finds finished matches in a trailing window whose recorded
# goal events under-report the official scoreline, and re-ingests them.
# CLI: backfill-scan [--days N]

import argparse
from dataclasses import dataclass, field
import datetime
import json
import logging
import sqlite3
from typing import Any, Callable, Dict, List, Optional

from floorball_ingest.config import BACKFILL_SCAN_DAYS, SOURCE_ROOT_URL, SUMMARY_SAMPLE_SIZE, get_env
from floorball_ingest.db import init_db
from floorball_ingest.errors import IngestError
from floorball_ingest.external_steps import StepResult, run_points_step
from floorball_ingest.models.match import MatchRow
from floorball_ingest.models.match_event import count_events_by_type, count_rows_by_match
from floorball_ingest.scrapers.scrape_match_protocol import check_source_access
from floorball_ingest.upd_match_events import IngestContext, reingest_by_external_id
from floorball_ingest.utils import OperationLogger, init_session, setup_logging

FLAG_MISSING_ALL_EVENTS = "missing_all_events"
FLAG_GOALS_LT_SCORE     = "goal_count_lt_score"


@dataclass
class SuspiciousMatch:
    match:          MatchRow
    flag:           str
    event_counts:   Dict[str, int] = field(default_factory=dict)
    points_rows:    int = 0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "match_id":         self.match.id,
            "external_id":      self.match.external_id,
            "date":             self.match.date,
            "score":            f"{self.match.home_score or 0}-{self.match.away_score or 0}",
            "flag":             self.flag,
            "total_events":     self.event_counts.get("total", 0),
            "goal_events":      self.event_counts.get("goal", 0),
            "points_rows":      self.points_rows,
        }


def suspicion_flag(match: MatchRow, event_counts: Optional[Dict[str, int]]) -> Optional[str]:
    """
    'missing_all_events' when nothing is recorded, 'goal_count_lt_score' when fewer goal events
    than goals in the official scoreline, otherwise None.
    """
    event_counts = event_counts or {}
    if event_counts.get("total", 0) == 0:
        return FLAG_MISSING_ALL_EVENTS
    if match.total_goals > 0 and event_counts.get("goal", 0) < match.total_goals:
        return FLAG_GOALS_LT_SCORE
    return None


def is_suspicious(match: MatchRow, event_counts: Optional[Dict[str, int]]) -> bool:
    return suspicion_flag(match, event_counts) is not None


def find_suspicious(
    cursor: sqlite3.Cursor,
    days:   int = BACKFILL_SCAN_DAYS,
    today:  Optional[datetime.date] = None,
) -> List[SuspiciousMatch]:
    today = today or datetime.date.today()
    since = today - datetime.timedelta(days=days)
    matches = MatchRow.get_finished_since(cursor, since)
    match_ids = [m.id for m in matches]
    event_counts = count_events_by_type(cursor, match_ids)
    points_counts = count_rows_by_match(cursor, "player_match_points", match_ids)

    suspicious: List[SuspiciousMatch] = []
    for match in matches:
        counts = event_counts.get(match.id, {"total": 0})
        flag = suspicion_flag(match, counts)
        if flag:
            suspicious.append(SuspiciousMatch(match, flag, counts, points_counts.get(match.id, 0)))

    logging.info(f"Scanned {len(matches)} finished matches since {since}: {len(suspicious)} suspicious")
    return suspicious


def run_scan(
    suspicious:     List[SuspiciousMatch],
    reingest_step:  Callable[[str], StepResult],
    points_step:    Callable[[str], StepResult],
    logger:         OperationLogger,
) -> Dict[str, Any]:
    """
    Re-ingest each suspicious match by external id, then recompute its points.
    Failures are counted and warned about; the scan itself never fails.
    """
    for item in suspicious:
        key = {"match_id": item.match.id, "external_id": item.match.external_id, "flag": item.flag}
        logger.inc_processed()
        logger.info(key, f"Goal events {item.event_counts.get('goal', 0)}, score {item.match.home_score or 0}-{item.match.away_score or 0}")

        external_id = item.match.external_id
        if not external_id:
            logger.failed(key, "missing external_id")
            continue

        try:
            ingest = reingest_step(external_id)
            if not ingest.ok:
                logger.failed(key, f"Re-ingestion failed: {ingest.message}")
                continue
            points = points_step(external_id)
            if not points.ok:
                logger.failed(key, f"Point computation failed: {points.message}")
                continue
            logger.success(key, "Re-ingested")
        except Exception as e:
            logging.error(f"Unexpected error re-ingesting {external_id}: {e}", exc_info=True)
            logger.failed(key, f"Unexpected error: {e}")

    succeeded, failed = logger.count("success"), logger.count("failed")
    if failed:
        logging.warning(f"Reconciliation: {failed} of {len(suspicious)} re-ingestions failed")
    return {
        "suspicious":   len(suspicious),
        "succeeded":    succeeded,
        "failed":       failed,
        "matches":      [s.as_dict() for s in suspicious[:SUMMARY_SAMPLE_SIZE]],
        "failures":     logger.samples("failed", SUMMARY_SAMPLE_SIZE),
    }


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Re-ingest recent matches whose goal events under-report the score")
    p.add_argument("--days", type=int, default=BACKFILL_SCAN_DAYS, help=f"Trailing window in days (default: {BACKFILL_SCAN_DAYS})")
    return p.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging()

    conn = None
    try:
        env = get_env()
        conn, cursor = init_db(env.db_name)
        session = init_session(env.user_agent, env.cookie)

        if not check_source_access(session, SOURCE_ROOT_URL):
            logging.error(f"Source {SOURCE_ROOT_URL} unreachable, aborting scan")
            return 1

        suspicious = find_suspicious(cursor, days=args.days)
        logger = OperationLogger(
            verbosity       = 2,
            print_output    = False,
            log_to_db       = True,
            cursor          = cursor,
            object_type     = "match_events",
            run_type        = "backfill_scan",
        )
        context = IngestContext.build(cursor, save_html=env.debug_save_html)
        summary = run_scan(
            suspicious,
            reingest_step   = lambda ext_id: reingest_by_external_id(cursor, ext_id, session, context),
            points_step     = lambda ext_id: run_points_step(env.points_command, external_id=ext_id),
            logger          = logger,
        )
        summary = {"days": args.days, **summary, "resolution": context.stats.as_dict()}

        logger.summarize()
        logger.commit_run_summary(cursor, remarks=f"days={args.days}")
        print(json.dumps(summary, ensure_ascii=False, indent=2, default=str))
        return 0

    except IngestError as e:
        logging.error(f"backfill-scan failed: {e}")
        return 1
    except Exception as e:
        logging.error(f"Unexpected error in backfill-scan: {e}", exc_info=True)
        return 1
    finally:
        if conn:
            conn.close()


if __name__ == "__main__":
    raise SystemExit(main())
