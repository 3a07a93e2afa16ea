"""
Logging setup shared by every coordclean module.

Console output is one line per message at the LOG_LEVEL env var level.
File output is JSON Lines: ``cleaning.jsonl`` in the run directory, plus
a rotating ``coordclean.log`` when COORDCLEAN_LOG_DIR is set. Each entry
carries the id of the current cleaning run so that runs sharing a log
directory can be told apart.

Usage:
    from coordclean.logging_config import get_pipeline_logger
    log = get_pipeline_logger(__name__)
"""

import json
import logging
import os
import time
import uuid
from logging.handlers import RotatingFileHandler

RUN_LOG_NAME = "cleaning.jsonl"
ROTATING_LOG_NAME = "coordclean.log"
ROTATING_MAX_BYTES = 10 * 1024 * 1024
ROTATING_BACKUPS = 3

CONSOLE_FORMAT = "%(asctime)s %(levelname)-7s %(name)s [%(run_id)s] %(message)s"

# Keys lifted from ``extra=`` into the JSON entry.
EXTRA_KEYS = (
    "step_name", "status", "input_summary", "output_summary",
    "timing_seconds", "warnings", "flag_summary", "partition",
)

_state = {"run_id": None, "configured": False, "run_handler": None}


def _new_run_id():
    return uuid.uuid4().hex[:8]


def get_run_id():
    if _state["run_id"] is None:
        _state["run_id"] = _new_run_id()
    return _state["run_id"]


def set_run_id(run_id=None):
    """Start a new cleaning run and return its id."""
    _state["run_id"] = run_id or _new_run_id()
    return _state["run_id"]


class RunIdFilter(logging.Filter):
    """Stamp records with the current run id."""

    def filter(self, record):
        record.run_id = get_run_id()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per log record."""

    def format(self, record):
        entry = {
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S")
                    + f".{int(record.msecs):03d}",
            "level": record.levelname,
            "logger": record.name,
            "line": record.lineno,
            "run_id": getattr(record, "run_id", None),
            "message": record.getMessage(),
        }
        entry.update({key: getattr(record, key)
                      for key in EXTRA_KEYS if hasattr(record, key)})
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _attach(handler, level, formatter):
    handler.setLevel(level)
    handler.setFormatter(formatter)
    # Filters on the root logger do not see records propagated from
    # child loggers, so every handler gets its own.
    handler.addFilter(RunIdFilter())
    logging.getLogger().addHandler(handler)
    return handler


def setup_logging(run_dir=None, console_level=None, file_level=logging.DEBUG,
                  log_dir=None):
    """Attach the console and file handlers to the root logger.

    Safe to call repeatedly: the console and rotating handlers are added
    once, the per-run handler once per run directory until
    reset_logging().

    Parameters
    ----------
    run_dir : str, optional
        Directory receiving ``cleaning.jsonl``.
    console_level : int, optional
        Default: LOG_LEVEL env var, else INFO.
    file_level : int
        Level of both file handlers.
    log_dir : str, optional
        Directory of the rotating log. Default: COORDCLEAN_LOG_DIR.
    """
    if console_level is None:
        console_level = getattr(
            logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO)
    if log_dir is None:
        log_dir = os.environ.get("COORDCLEAN_LOG_DIR")

    if not _state["configured"]:
        logging.getLogger().setLevel(logging.DEBUG)
        _attach(logging.StreamHandler(), console_level,
                logging.Formatter(CONSOLE_FORMAT, datefmt="%H:%M:%S"))
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
            _attach(RotatingFileHandler(os.path.join(log_dir, ROTATING_LOG_NAME),
                                        maxBytes=ROTATING_MAX_BYTES,
                                        backupCount=ROTATING_BACKUPS),
                    file_level, JsonFormatter())
        _state["configured"] = True

    if run_dir and _state["run_handler"] is None:
        os.makedirs(run_dir, exist_ok=True)
        _state["run_handler"] = _attach(
            logging.FileHandler(os.path.join(run_dir, RUN_LOG_NAME)),
            file_level, JsonFormatter())


def reset_logging():
    """Close and drop every root handler and forget the run id (tests)."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    _state.update(run_id=None, configured=False, run_handler=None)


def get_pipeline_logger(name, run_dir=None):
    """Logger for a coordclean module; sets up logging on first use."""
    if not _state["configured"]:
        setup_logging(run_dir=run_dir)
    return logging.getLogger(name)


def log_step_summary(logger, step_name, status="success", input_summary=None,
                     output_summary=None, timing_seconds=None,
                     warnings_list=None):
    """Log one line per finished cleaning step, with its summaries as extras.

    Errors are logged at ERROR, everything else at INFO.
    """
    text = f"[{step_name}] {status}"
    if timing_seconds is not None:
        text += f" in {timing_seconds:.2f}s"
    if output_summary:
        text += f": {output_summary}"

    extra = {"step_name": step_name, "status": status}
    for key, value in (("input_summary", input_summary),
                       ("output_summary", output_summary),
                       ("timing_seconds", timing_seconds),
                       ("warnings", warnings_list)):
        if value:
            extra[key] = value
    level = logging.ERROR if status == "error" else logging.INFO
    logger.log(level, text, extra=extra)


class StepTimer:
    """Wall-clock timer for a ``with`` block; result in ``elapsed``."""

    elapsed = None

    def __enter__(self):
        self._t0 = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.elapsed = time.perf_counter() - self._t0
        return False
