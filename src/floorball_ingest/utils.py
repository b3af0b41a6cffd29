# src/floorball_ingest/utils.py
# Shared helpers: logging setup, text normalization, HTTP session and run bookkeeping.

import inspect
import json
import logging
import os
import re
import sqlite3
import time
import unicodedata
import uuid
from collections import defaultdict
from datetime import date
from typing import Any, Dict, List, Optional, Union

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from floorball_ingest.config import (
    LOG_FILE,
    LOG_LEVEL,
    REQUEST_BACKOFF_FACTOR,
    REQUEST_RETRIES,
)

_LOGGING_CONFIGURED = False

JERSEY_RE           = re.compile(r"(?:#|nr\.?\s*)\d+\s*", re.IGNORECASE)
TRAILING_PARENS_RE  = re.compile(r"\([^)]*\)\s*$")


def setup_logging(log_file: str = LOG_FILE, log_level: str = LOG_LEVEL) -> None:

    # %(asctime)s: Timestamp when the log message was created.
    # %(levelname)s: The log level (e.g., DEBUG, INFO, WARNING, etc.).
    # %(funcName)s: The name of the function where the log call was made.
    # %(lineno)d: The line number where the log call was made.

    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    log_dir = os.path.dirname(os.path.abspath(log_file))
    os.makedirs(log_dir, exist_ok=True)

    # Clear any existing handlers to avoid duplicates
    logging.getLogger().handlers = []

    file_handler = logging.FileHandler(log_file, encoding='utf-8', mode='a')
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter('[%(asctime)s] %(levelname)-8s %(filename)-28.28s%(lineno)-5d%(funcName)-30.30s: %(message)s', datefmt='%b %d %a] [%H:%M:%S')
    file_handler.setFormatter(file_formatter)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter('[%(asctime)s] [%(levelname)-7s] %(funcName)-30s : %(message)s', datefmt='%b %d %a %H:%M:%S')
    console_handler.setFormatter(console_formatter)

    logging.getLogger().addHandler(file_handler)
    logging.getLogger().addHandler(console_handler)
    logging.getLogger().setLevel(log_level)

    _LOGGING_CONFIGURED = True
    logging.info(f"Logging configured to {log_file} at level {log_level}")
    logging.info("-------------------------------------------------------------------")


def normalize_key(text: Optional[str]) -> str:
    """
    Normalize for matching: strip diacritics, collapse whitespace, trim, lower-case.

    Examples
    --------
    "Jānis  Bērziņš"    -> "janis berzins"
    None                -> ""
    """
    if not text:
        return ""
    decomp = unicodedata.normalize("NFD", str(text))
    s = "".join(ch for ch in decomp if not unicodedata.combining(ch))
    s = re.sub(r"\s+", " ", s)
    return s.strip().lower()


def clean_text(value: Optional[str]) -> str:
    """Collapse whitespace (including non-breaking spaces) and trim."""
    if not value:
        return ""
    return re.sub(r"\s+", " ", value.replace("\u00a0", " ")).strip()


def clean_name(value: Optional[str]) -> str:
    """
    Clean a player cell for display and matching.
    Example: '#17 Jānis Bērziņš (C)' -> 'Jānis Bērziņš'
    """
    s = clean_text(value)
    s = TRAILING_PARENS_RE.sub("", s).strip()
    s = JERSEY_RE.sub("", s)
    return clean_text(s)


def init_session(user_agent: str, cookie: Optional[str] = None) -> requests.Session:
    """Requests session with bounded retries and exponential backoff for transient source failures."""
    session = requests.Session()
    session.headers.update({
        "User-Agent":       user_agent,
        "Accept":           "text/html,application/xhtml+xml",
        "Accept-Language":  "lv,en;q=0.9",
    })
    if cookie:
        session.headers["Cookie"] = cookie

    retry = Retry(
        total=REQUEST_RETRIES,
        backoff_factor=REQUEST_BACKOFF_FACTOR,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=("GET",),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


class OperationLogger:
    """
    Run bookkeeping for the ingestion CLIs: tracks success, failed, skipped and warnings.

    Usage:
    - Initialize at the start of a run:
      logger = OperationLogger(verbosity=2, object_type="match_events", run_type="ingest_matches")
    - Record outcomes per match:
      logger.success({"match_id": m.id, "external_id": m.external_id}, "Processed")
      logger.failed({...}, "Fetch failed")
      logger.skipped({...}, "No protocol published")
      logger.warning({...}, "Unresolved players")
    - Call summarize() at the end to print/log the totals.

    Parameters:
    - verbosity (int):
        0: Summary totals only.
        1: Totals + reason breakdowns (default).
        2: Level 1 + individual failed/skipped/warning lines in the log file.
        3: Level 2 + individual success lines.
    - print_output (bool): Print individual entries to console.
    - log_to_db (bool): Persist failed/warning entries to log_details (requires cursor).
    """

    def __init__(
        self,
        verbosity:      int = 1,
        print_output:   bool = False,
        log_to_db:      bool = False,
        cursor:         Optional[sqlite3.Cursor] = None,
        object_type:    Optional[str] = None,   # e.g. 'match_events'
        run_type:       Optional[str] = None,   # e.g. 'ingest_matches', 'backfill_scan'
        run_id:         Optional[str] = None,
    ):
        if log_to_db and not cursor:
            raise ValueError("Cursor required if log_to_db is True")

        self.run_id             = run_id or str(uuid.uuid4())
        self.verbosity          = verbosity
        self.print_output       = print_output
        self.log_to_db          = log_to_db
        self.cursor             = cursor if log_to_db else None
        self.results            = defaultdict(lambda: {"success": 0, "failed": 0, "skipped": 0})
        self.reasons            = {"success": defaultdict(int), "failed": defaultdict(int), "skipped": defaultdict(int), "warning": defaultdict(int)}
        self.individual_logs    = []
        self.object_type        = object_type
        self.run_type           = run_type
        self.processed          = 0
        self.start_time         = time.time()

    def inc_processed(self, n: int = 1):
        self.processed += n

    def _format_msg(self, context: dict, reason: str) -> str:
        if not context:
            return reason
        return f"({', '.join(f'{k}: {v}' for k, v in context.items())}): {reason}"

    def _enrich_context(self, context: Union[dict, str, None]) -> dict:
        if context is None:
            return {}
        if isinstance(context, str):
            return {"key": context}
        enriched = context.copy()
        for key, value in enriched.items():
            if isinstance(value, date):
                enriched[key] = value.isoformat()
        return enriched

    def _write_db(self, status: str, context: dict, reason: str, msg_id: Optional[str], function_name: str, filename: str):
        if not self.cursor:
            return
        try:
            self.cursor.execute('''
                INSERT INTO log_details (
                    run_id, run_date, object_type, process_type,
                    function_name, filename, context_json, status, message, msg_id
                ) VALUES (?, CURRENT_TIMESTAMP, ?, ?, ?, ?, ?, ?, ?, ?)
            ''', (
                self.run_id,
                self.object_type or "unknown",
                self.run_type or "unknown",
                function_name,
                filename,
                json.dumps(context, default=str),
                status,
                reason,
                msg_id,
            ))
            self.cursor.connection.commit()
        except sqlite3.Error as e:
            logging.error(f"Error logging {status} to DB: {e}")

    def _record(
        self,
        status:         str,
        context:        Union[dict, str, None],
        reason:         str,
        msg_id:         Optional[str],
        to_console:     Optional[bool],
        emoji:          str,
        log_level:      int,
        min_verbosity:  int,
        persist:        bool,
    ):
        frame = inspect.currentframe().f_back.f_back
        function_name = frame.f_code.co_name
        filename = os.path.basename(inspect.getfile(frame))

        enriched = self._enrich_context(context)
        if status == "warning":
            self.reasons["warning"][reason] += 1
        else:
            self.results[json.dumps(enriched, sort_keys=True, default=str)][status] += 1
            self.reasons[status][reason] += 1

        msg = self._format_msg(enriched, reason)
        if persist:
            self._write_db("error" if status == "failed" else status, enriched, reason, msg_id, function_name, filename)
        if self.verbosity >= min_verbosity:
            logging.log(log_level, msg, stacklevel=3)

        should_print = self.print_output if to_console is None else to_console
        if should_print:
            print(f"{emoji} {msg}")

        self.individual_logs.append({
            "status":           status,
            "context":          enriched,
            "message":          reason,
            "msg_id":           msg_id,
            "function_name":    function_name,
            "filename":         filename,
        })

    def info(self, item_key_or_message: Union[dict, str], reason: Optional[str] = None, *, to_console: Optional[bool] = None):
        """Does not affect counters. logger.info("message") or logger.info({"match_id": ...}, "message")."""
        if reason is None:
            log_msg = str(item_key_or_message)
        else:
            log_msg = self._format_msg(self._enrich_context(item_key_or_message), reason)
        logging.info(log_msg, stacklevel=2)
        should_print = self.print_output if to_console is None else to_console
        if should_print:
            print(f"ℹ️  {log_msg}")

    def success(self, context, reason: str = "Success", msg_id: Optional[str] = None, *, to_console: Optional[bool] = None):
        self._record("success", context, reason, msg_id, to_console, "✅", logging.INFO, 3, False)

    def failed(self, context, reason: str = "Failed", msg_id: Optional[str] = None, *, to_console: Optional[bool] = None):
        self._record("failed", context, reason, msg_id, to_console, "❌", logging.ERROR, 1, True)

    def skipped(self, context, reason: str = "Skipped", msg_id: Optional[str] = None, *, to_console: Optional[bool] = None):
        self._record("skipped", context, reason, msg_id, to_console, "⏭️ ", logging.WARNING, 2, self.verbosity >= 3)

    def warning(self, context, reason: str, msg_id: Optional[str] = None, *, to_console: Optional[bool] = None):
        self._record("warning", context, reason, msg_id, to_console, "⚠️ ", logging.WARNING, 2, True)

    def count(self, status: str) -> int:
        if status == "warning":
            return sum(self.reasons["warning"].values())
        return sum(d[status] for d in self.results.values())

    def samples(self, status: str, limit: int = 10) -> List[Dict[str, Any]]:
        """First `limit` individual entries of a status, as {**context, "reason": message} dicts."""
        out = []
        for entry in self.individual_logs:
            if entry["status"] != status:
                continue
            out.append({**entry["context"], "reason": entry["message"]})
            if len(out) >= limit:
                break
        return out

    def summarize(self):
        """Print/log the totals and reason breakdowns, one line at a time."""
        lines = ["📊 Operation Summary:"]
        for status, emoji, label in (
            ("success", "✅", "Success"),
            ("failed",  "❌", "Failed"),
            ("skipped", "⏭️ ", "Skipped"),
            ("warning", "⚠️ ", "Warnings"),
        ):
            lines.append(f"   {emoji} {label}: {self.count(status)}")
            if self.verbosity >= 1:
                for reason, count in self.reasons[status].items():
                    lines.append(f"      • {reason}: {count}")

        runtime_seconds = time.time() - self.start_time
        lines.append("")
        lines.append(f"   ⏱️  Runtime: {runtime_seconds:.1f}s")
        lines.append(f"   📦 Records processed: {self.processed}")

        for line in lines:
            logging.info(line, stacklevel=2)
            print(line)
        print("")

    def commit_run_summary(self, cursor: sqlite3.Cursor, remarks: Optional[str] = None):
        cursor.execute("""
            INSERT INTO run_log (
                run_id, object_type, process_type, records_processed,
                records_success, records_failed, records_skipped,
                records_warnings, runtime_seconds, remarks
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            self.run_id,
            self.object_type or "unknown",
            self.run_type or "unknown",
            self.processed,
            self.count("success"),
            self.count("failed"),
            self.count("skipped"),
            self.count("warning"),
            time.time() - self.start_time,
            remarks,
        ))
        cursor.connection.commit()
