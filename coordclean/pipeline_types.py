"""
Provenance records for cleaning runs.

A StepResult is produced for every stage run through step_runner; the
CleaningRunResult gathering them is saved as ``run_result.json`` beside
the flag table so a run can be audited without its logs.
"""

import subprocess
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class StepStatus(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    ERROR = "error"


def _now_iso():
    return datetime.now(timezone.utc).isoformat()


def _git_revision():
    """Short commit hash of the working tree, None outside a git checkout."""
    try:
        out = subprocess.run(["git", "rev-parse", "--short", "HEAD"],
                             capture_output=True, text=True, check=True)
    except (OSError, subprocess.CalledProcessError):
        return None
    return out.stdout.strip() or None


def _known_fields(cls, d):
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in d.items() if k in names}


@dataclass
class StepResult:
    """Outcome of one stage: status, summaries, timing and traceback."""

    step_name: str
    status: str
    input_summary: dict = field(default_factory=dict)
    output_summary: dict = field(default_factory=dict)
    timing_seconds: float = 0.0
    warnings: list = field(default_factory=list)
    error: Optional[str] = None
    started_at: str = field(default_factory=_now_iso)
    completed_at: Optional[str] = None

    @property
    def ok(self):
        # A skipped stage was not requested; it did not fail.
        return self.status != StepStatus.ERROR.value

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, d):
        return cls(**_known_fields(cls, d))


@dataclass
class CleaningRunResult:
    """All stages of one run over one occurrence table."""

    run_dir: str = ""
    source: str = ""
    tests: list = field(default_factory=list)
    n_records: int = 0
    flag_summary: dict = field(default_factory=dict)
    step_results: list = field(default_factory=list)
    total_time_seconds: float = 0.0
    output_files: list = field(default_factory=list)
    git_sha: Optional[str] = field(default_factory=_git_revision)
    started_at: str = field(default_factory=_now_iso)

    @property
    def failed_steps(self):
        return [s for s in self.step_results if not s.ok]

    @property
    def all_ok(self):
        return not self.failed_steps

    def to_dict(self):
        d = {f.name: getattr(self, f.name) for f in fields(self)
             if f.name != "step_results"}
        d["steps"] = [s.to_dict() for s in self.step_results]
        d["all_ok"] = self.all_ok
        return d

    @classmethod
    def from_dict(cls, d):
        result = cls(**_known_fields(cls, d))
        result.step_results = [StepResult.from_dict(s) for s in d.get("steps", [])]
        return result
