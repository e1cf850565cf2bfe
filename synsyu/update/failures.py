import datetime
import json
from pathlib import Path
from typing import NamedTuple, Optional

import structlog

_log = structlog.get_logger()


class FailedUpdate(NamedTuple):
    name: str
    reason: str


class FailedUpdates:
    """Collects updates that failed or were skipped during a run.

    With a `failure_log`, every failure is also appended to that file as a
    JSON line so wrapper scripts can pick them up after the run.
    """

    def __init__(self, failure_log: Optional[Path] = None, log=_log):
        self.failure_log = failure_log
        self.log = log
        self._failures: list[FailedUpdate] = []

    def __len__(self):
        return len(self._failures)

    def __bool__(self):
        return bool(self._failures)

    @property
    def failures(self) -> list[FailedUpdate]:
        return list(self._failures)

    def record(self, name: str, reason: str):
        failure = FailedUpdate(name, reason)
        self._failures.append(failure)
        self.log.warning(
            "update-failed",
            _replace_msg="Recorded failed update for {name}: {reason}",
            name=name,
            reason=reason,
        )
        if self.failure_log:
            self._append(failure)

    def _append(self, failure: FailedUpdate):
        entry = dict(
            failure._asdict(),
            time=datetime.datetime.now().isoformat(timespec="seconds"),
        )
        try:
            self.failure_log.parent.mkdir(parents=True, exist_ok=True)
            with open(self.failure_log, "a", encoding="utf-8") as f:
                print(json.dumps(entry), file=f)
        except OSError as e:
            self.log.warning(
                "failure-log-write-failed",
                _replace_msg="Could not write {failure_log}: {error}",
                failure_log=str(self.failure_log),
                error=str(e),
            )

    def summary(self) -> int:
        """Logs every recorded failure once more and returns their number."""
        for failure in self._failures:
            self.log.error(
                "update-failure-summary",
                _replace_msg="{name}: {reason}",
                name=failure.name,
                reason=failure.reason,
            )
        if not self._failures:
            self.log.info(
                "update-no-failures", _replace_msg="No failed updates."
            )
        return len(self._failures)
