"""Run result aggregation.

Collects per-phase outcomes from the purge and create paths and derives the
overall disposition and process exit code.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import List


class Disposition(IntEnum):
    """Overall outcome; the integer value is the process exit code."""

    OK = 0
    WARNING = 1
    CRITICAL = 2


@dataclass(frozen=True)
class Outcome:
    """One reported event.

    Attributes:
        phase: "purge", "backup", "cleanup" or "run"
        subject: Name tag, region or resource the outcome concerns
        status: Severity of the outcome
        message: Human-readable message
    """

    phase: str
    subject: str
    status: Disposition
    message: str


@dataclass
class RunResult:
    """Aggregated result of one invocation.

    The disposition is the worst status recorded: OK when everything
    succeeded, WARNING when some item failed but the run finished, CRITICAL
    when the run was aborted.
    """

    outcomes: List[Outcome] = field(default_factory=list)

    def add(self, phase: str, subject: str, status: Disposition, message: str) -> Outcome:
        outcome = Outcome(phase=phase, subject=subject, status=status, message=message)
        self.outcomes.append(outcome)
        return outcome

    def ok(self, phase: str, subject: str, message: str) -> Outcome:
        return self.add(phase, subject, Disposition.OK, message)

    def warning(self, phase: str, subject: str, message: str) -> Outcome:
        return self.add(phase, subject, Disposition.WARNING, message)

    def critical(self, phase: str, subject: str, message: str) -> Outcome:
        return self.add(phase, subject, Disposition.CRITICAL, message)

    @property
    def disposition(self) -> Disposition:
        return max((o.status for o in self.outcomes), default=Disposition.OK)

    @property
    def exit_code(self) -> int:
        return int(self.disposition)

    def messages(self, minimum: Disposition = Disposition.OK) -> List[str]:
        """Messages at or above ``minimum``, in the order they were recorded."""
        return [o.message for o in self.outcomes if o.status >= minimum]

    def status_line(self) -> str:
        """Monitoring status line, e.g. ``AMIbackup WARNING: msg, msg``.

        Only messages at the run's own severity are listed, so an OK line
        names what was created and a WARNING line names what went wrong.
        """
        disposition = self.disposition
        messages = [o.message for o in self.outcomes if o.status == disposition]
        return f"AMIbackup {disposition.name}: {', '.join(messages)}"
