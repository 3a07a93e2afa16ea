"""
Uniform execution of cleaning stages.

run_step() calls a stage function and turns whatever happens into a
StepResult: elapsed time, input/output summaries, and on failure the
traceback. Exceptions never escape, so a failing stage is recorded in
the run result instead of aborting the process.
"""

import traceback
from datetime import datetime, timezone
from typing import Callable, TypeVar

import pandas as pd

from coordclean.errors import CoordCleanError
from coordclean.logging_config import StepTimer, get_pipeline_logger, log_step_summary
from coordclean.pipeline_types import StepResult, StepStatus

T = TypeVar("T")

log = get_pipeline_logger(__name__)

# Failures caused by bad input rather than by a bug.
INPUT_ERRORS = (
    CoordCleanError,
    FileNotFoundError,
    ValueError,
    KeyError,
    pd.errors.EmptyDataError,
    pd.errors.ParserError,
)


def run_step(
    step_name: str,
    fn: Callable[..., T],
    *args,
    input_summary: dict | None = None,
    output_summary_fn: Callable[[T], dict] | None = None,
    expected_exceptions: tuple[type[Exception], ...] = INPUT_ERRORS,
    **kwargs,
) -> tuple[StepResult, T | None]:
    """Run ``fn(*args, **kwargs)`` as the stage *step_name*.

    Parameters
    ----------
    step_name : str
    fn : Callable
    input_summary : dict, optional
        Stored unchanged in the StepResult.
    output_summary_fn : callable, optional
        Builds the output summary from a non-None return value.
    expected_exceptions : tuple
        Logged as input errors; any other exception is logged as
        unexpected. Both are captured.

    Returns
    -------
    tuple[StepResult, T | None]
        The return value is None when the stage failed.
    """
    step = StepResult(step_name=step_name, status=StepStatus.SUCCESS.value,
                      input_summary=dict(input_summary or {}))
    value = None
    with StepTimer() as timer:
        try:
            value = fn(*args, **kwargs)
        except expected_exceptions as exc:
            log.error("%s: %s: %s", step_name, type(exc).__name__, exc,
                      exc_info=True)
            step.status, step.error = StepStatus.ERROR.value, traceback.format_exc()
        except Exception:
            log.exception("%s: unexpected failure", step_name)
            step.status, step.error = StepStatus.ERROR.value, traceback.format_exc()

    step.timing_seconds = timer.elapsed
    step.completed_at = datetime.now(timezone.utc).isoformat()
    if step.ok and output_summary_fn is not None and value is not None:
        step.output_summary = output_summary_fn(value)

    log_step_summary(log, step_name, step.status,
                     input_summary=step.input_summary,
                     output_summary=step.output_summary,
                     timing_seconds=step.timing_seconds)
    return step, value


def skipped_step(step_name, reason):
    """StepResult for a stage that was not requested or not applicable."""
    step = StepResult(step_name=step_name, status=StepStatus.SKIPPED.value,
                      output_summary={"reason": reason})
    log_step_summary(log, step_name, step.status,
                     output_summary=step.output_summary)
    return step
