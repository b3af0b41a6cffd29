# src/floorball_ingest/upd_matches.py
#
# Batch orchestrator: select finished matches, ingest each protocol, run point computation.
# CLI: ingest-matches [--backfill]

import argparse
from dataclasses import dataclass
import datetime
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from floorball_ingest.config import (
    FAILURE_RATIO_THRESHOLD,
    INGEST_RECENT_DAYS,
    SOURCE_ROOT_URL,
    SUMMARY_SAMPLE_SIZE,
    get_env,
)
from floorball_ingest.db import init_db
from floorball_ingest.errors import IngestError
from floorball_ingest.external_steps import StepResult, run_points_step
from floorball_ingest.models.match import MatchRow
from floorball_ingest.models.match_event import count_rows_by_match, fetch_sanity_metrics
from floorball_ingest.scrapers.scrape_match_protocol import check_source_access
from floorball_ingest.upd_match_events import IngestContext, ingest_match_step
from floorball_ingest.utils import OperationLogger, init_session, setup_logging

MatchStep = Callable[[MatchRow], StepResult]


@dataclass
class SelectionBreakdown:
    finished:               int = 0
    recent:                 int = 0
    missing_events:         int = 0
    missing_goalie_stats:   int = 0
    selected:               int = 0
    backfill:               bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "finished":                 self.finished,
            "recent":                   self.recent,
            "missing_events":           self.missing_events,
            "missing_goalie_stats":     self.missing_goalie_stats,
            "selected":                 self.selected,
            "backfill":                 self.backfill,
        }


def select_matches(
    matches:        List[MatchRow],
    event_counts:   Dict[str, int],
    goalie_counts:  Dict[str, int],
    backfill:       bool = False,
    today:          Optional[datetime.date] = None,
    recent_days:    int = INGEST_RECENT_DAYS,
) -> Tuple[List[MatchRow], SelectionBreakdown]:
    """
    Backfill: every finished match.
    Incremental: finished matches with no events, no goalie stats, or a date inside the recent window
    (protocols are sometimes edited after first publication).
    """
    today = today or datetime.date.today()
    cutoff = today - datetime.timedelta(days=recent_days)
    breakdown = SelectionBreakdown(backfill=backfill)
    selected: List[MatchRow] = []

    for match in matches:
        if match.status != "finished":
            continue
        breakdown.finished += 1

        is_recent = match.date is not None and match.date >= cutoff
        no_events = event_counts.get(match.id, 0) == 0
        no_goalie = goalie_counts.get(match.id, 0) == 0
        breakdown.recent += is_recent
        breakdown.missing_events += no_events
        breakdown.missing_goalie_stats += no_goalie

        if backfill or is_recent or no_events or no_goalie:
            selected.append(match)

    breakdown.selected = len(selected)
    return selected, breakdown


def compute_exit_code(failed: int, selected: int, threshold: float = FAILURE_RATIO_THRESHOLD) -> int:
    """0 without failures or below the failure-ratio threshold; 1 at or above it. The ratio is over all selected matches."""
    if failed == 0:
        return 0
    ratio = failed / max(1, selected)
    if ratio >= threshold:
        logging.error(f"Failure ratio {ratio:.2f} ({failed}/{selected}) at or above threshold {threshold}")
        return 1
    logging.warning(f"Failure ratio {ratio:.2f} ({failed}/{selected}) below threshold {threshold}, exiting 0")
    return 0


def _match_key(match: MatchRow) -> Dict[str, Any]:
    return {"match_id": match.id, "external_id": match.external_id}


def run_batch(
    matches:        List[MatchRow],
    ingest_step:    MatchStep,
    points_step:    MatchStep,
    logger:         OperationLogger,
) -> Dict[str, Any]:
    """
    Ingest then compute points for each match, one at a time. Every match is attempted once;
    a failing match never stops the batch. Returns counts and the exit code.
    """
    attempted = 0

    for match in matches:
        key = _match_key(match)
        logger.inc_processed()

        if not match.has_numeric_external_id():
            logger.skipped(key, "Non-numeric external_id")
            continue

        attempted += 1
        try:
            ingest = ingest_step(match)
            if not ingest.ok:
                logger.failed(key, f"Ingestion failed: {ingest.message}")
                continue
            if not ingest.data.get("events_inserted") and not ingest.data.get("goalie_inserted"):
                logger.skipped(key, ingest.data.get("message") or "No events or goalie stats")
                continue

            points = points_step(match)
            if not points.ok:
                logger.failed(key, f"Point computation failed: {points.message}")
                continue

            logger.success(key, "Processed")
        except Exception as e:
            logging.error(f"Unexpected error for match {match.id}: {e}", exc_info=True)
            logger.failed(key, f"Unexpected error: {e}")

    failed = logger.count("failed")
    return {
        "selected":     len(matches),
        "attempted":    attempted,
        "processed":    logger.count("success"),
        "skipped":      logger.count("skipped"),
        "failed":       failed,
        "exit_code":    compute_exit_code(failed, len(matches)),
    }


def _external_ids(entries: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [{"external_id": e.get("external_id"), "reason": e.get("reason")} for e in entries]


def build_summary(
    batch:      Dict[str, Any],
    logger:     OperationLogger,
    breakdown:  SelectionBreakdown,
    sanity:     Dict[str, int],
    resolution: Dict[str, Any],
) -> Dict[str, Any]:
    return {
        **batch,
        "failure_ratio":    round(batch["failed"] / max(1, batch["selected"]), 3),
        "samples": {
            "processed":    _external_ids(logger.samples("success", SUMMARY_SAMPLE_SIZE)),
            "skipped":      _external_ids(logger.samples("skipped", SUMMARY_SAMPLE_SIZE)),
            "failed":       _external_ids(logger.samples("failed", SUMMARY_SAMPLE_SIZE)),
        },
        "selection":        breakdown.as_dict(),
        "sanity":           sanity,
        "resolution":       resolution,
    }


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Ingest match protocols for finished matches and compute points")
    p.add_argument("--backfill", action="store_true", help="Re-ingest every finished match of the season")
    return p.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging()

    conn = None
    try:
        env = get_env()
        conn, cursor = init_db(env.db_name)
        session = init_session(env.user_agent, env.cookie)

        # Pre-flight
        # =============================================================================
        if not check_source_access(session, SOURCE_ROOT_URL):
            logging.error(f"Source {SOURCE_ROOT_URL} unreachable, aborting run")
            return 1

        logger = OperationLogger(
            verbosity       = 2,
            print_output    = False,
            log_to_db       = True,
            cursor          = cursor,
            object_type     = "match_events",
            run_type        = "ingest_matches_backfill" if args.backfill else "ingest_matches",
        )

        # Selection
        # =============================================================================
        finished = MatchRow.get_finished_for_season(cursor, env.season)
        match_ids = [m.id for m in finished]
        selected, breakdown = select_matches(
            finished,
            count_rows_by_match(cursor, "match_events", match_ids),
            count_rows_by_match(cursor, "match_goalie_stats", match_ids),
            backfill=args.backfill,
        )
        logger.info(f"Selection ({'backfill' if args.backfill else 'incremental'}): {breakdown.as_dict()}")

        # Per match
        # =============================================================================
        context = IngestContext.build(cursor, save_html=env.debug_save_html)
        batch = run_batch(
            selected,
            ingest_step = lambda m: ingest_match_step(cursor, m, session, context),
            points_step = lambda m: run_points_step(env.points_command, match_id=m.id),
            logger      = logger,
        )

        summary = build_summary(batch, logger, breakdown, fetch_sanity_metrics(cursor), context.stats.as_dict())
        logger.summarize()
        logger.commit_run_summary(cursor, remarks=json.dumps(summary["selection"]))
        print(json.dumps(summary, ensure_ascii=False, indent=2, default=str))
        return batch["exit_code"]

    except IngestError as e:
        logging.error(f"ingest-matches failed: {e}")
        return 1
    except Exception as e:
        logging.error(f"Unexpected error in ingest-matches: {e}", exc_info=True)
        return 1
    finally:
        if conn:
            conn.close()


if __name__ == "__main__":
    raise SystemExit(main())
