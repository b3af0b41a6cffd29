# src/floorball_ingest/external_steps.py
#
# Exit-code-shaped results for the per-match pipeline steps, and the downstream
# point computation, which runs as a separate command.

from dataclasses import dataclass, field
import logging
import shlex
import subprocess
from typing import Any, Dict, List, Optional

POINTS_STEP_TIMEOUT = 300   # Seconds


@dataclass
class StepResult:
    ok:         bool
    message:    str = ""
    data:       Dict[str, Any] = field(default_factory=dict)


def run_command(args: List[str], timeout: Optional[int] = POINTS_STEP_TIMEOUT) -> StepResult:
    """Run a command to completion. ok is True only for exit code 0."""
    logging.debug(f"Running: {' '.join(args)}")
    try:
        proc = subprocess.run(args, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired:
        return StepResult(False, f"Timed out after {timeout}s: {' '.join(args)}")
    except OSError as e:
        return StepResult(False, f"Could not start {args[0]}: {e}")

    output = (proc.stderr or proc.stdout or "").strip().splitlines()
    tail = output[-1] if output else ""
    if proc.returncode != 0:
        return StepResult(False, f"Exit code {proc.returncode}: {tail}", {"returncode": proc.returncode})
    return StepResult(True, tail, {"returncode": 0})


def run_points_step(
    points_command: Optional[str],
    match_id:       Optional[str] = None,
    external_id:    Optional[str] = None,
) -> StepResult:
    """
    Invoke the point computation for one match: '<command> --matchId <id>' or '<command> --externalId <id>'.
    Without a configured command the step is reported as not run.
    """
    if not points_command:
        return StepResult(True, "Point computation not configured", {"ran": False})
    if match_id:
        args = shlex.split(points_command) + ["--matchId", str(match_id)]
    elif external_id:
        args = shlex.split(points_command) + ["--externalId", str(external_id)]
    else:
        return StepResult(False, "Point computation needs a match id or external id")

    result = run_command(args)
    result.data["ran"] = True
    return result
