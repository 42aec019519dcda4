"""Step outcomes and the aggregate offboarding report."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StepPolicy(str, Enum):
    """How a step failure affects the rest of the run."""

    FATAL = "FATAL"
    SKIP_BRANCH = "SKIP_BRANCH"
    CONTINUE_ITEM = "CONTINUE_ITEM"


class StepStatus(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"
    NOT_EXECUTED = "NOT_EXECUTED"


class OverallStatus(str, Enum):
    SUCCESS = "SUCCESS"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"


@dataclass
class ItemOutcome:
    """Result of one item inside a multi-item step (e.g. one group)."""

    target_id: str
    name: str
    status: StepStatus
    detail: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target_id": self.target_id,
            "name": self.name,
            "status": self.status.value,
            "detail": self.detail,
        }


@dataclass
class WorkflowStep:
    name: str
    ordinal: int
    policy: StepPolicy
    executed: bool = False
    status: StepStatus = StepStatus.NOT_EXECUTED
    detail: Optional[str] = None
    # Skips that leave work undone degrade the overall status; a skip the
    # caller asked for (no forwarding target) does not.
    degrading: bool = True
    items: List[ItemOutcome] = field(default_factory=list)

    def succeed(self, detail: Optional[str] = None) -> None:
        self.executed = True
        self.status = StepStatus.SUCCEEDED
        self.detail = detail

    def fail(self, detail: str) -> None:
        self.executed = True
        self.status = StepStatus.FAILED
        self.detail = detail

    def skip(self, reason: str, degrading: bool = True) -> None:
        self.executed = False
        self.status = StepStatus.SKIPPED
        self.detail = reason
        self.degrading = degrading

    @property
    def degraded(self) -> bool:
        if self.status == StepStatus.FAILED:
            return True
        if self.status == StepStatus.SKIPPED and self.degrading:
            return True
        return any(item.status != StepStatus.SUCCEEDED for item in self.items)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "name": self.name,
            "ordinal": self.ordinal,
            "policy": self.policy.value,
            "executed": self.executed,
            "status": self.status.value,
            "detail": self.detail,
        }
        if self.items:
            payload["items"] = [item.to_dict() for item in self.items]
        return payload


@dataclass
class OffboardingReport:
    """Ordered step outcomes for one offboarding run."""

    reference: str
    steps: List[WorkflowStep] = field(default_factory=list)
    state: str = "INIT"
    aborted: bool = False
    started_at: datetime = field(default_factory=_utc_now)
    finished_at: Optional[datetime] = None

    @property
    def overall_status(self) -> OverallStatus:
        if self.aborted:
            return OverallStatus.FAILED
        if any(step.degraded for step in self.steps):
            return OverallStatus.PARTIAL
        return OverallStatus.SUCCESS

    def step(self, name: str) -> WorkflowStep:
        for step in self.steps:
            if step.name == name:
                return step
        raise KeyError(name)

    @property
    def failed_step(self) -> Optional[WorkflowStep]:
        """The FATAL step that aborted the run, if any."""

        if not self.aborted:
            return None
        for step in self.steps:
            if step.status == StepStatus.FAILED and step.policy == StepPolicy.FATAL:
                return step
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reference": self.reference,
            "overall_status": self.overall_status.value,
            "state": self.state,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "steps": [step.to_dict() for step in self.steps],
        }

    def render_lines(self) -> List[str]:
        lines = [f"Offboarding report for {self.reference}: {self.overall_status.value}"]
        for step in self.steps:
            line = f"  {step.ordinal}. {step.name:<26} {step.status.value}"
            if step.detail:
                line += f" - {step.detail}"
            lines.append(line)
            for item in step.items:
                item_line = f"       {item.name} ({item.target_id}): {item.status.value}"
                if item.detail:
                    item_line += f" - {item.detail}"
                lines.append(item_line)
        failed = self.failed_step
        if failed is not None:
            lines.append(f"Run aborted at '{failed.name}'. Remaining steps require manual remediation.")
        return lines


__all__ = [
    "ItemOutcome",
    "OffboardingReport",
    "OverallStatus",
    "StepPolicy",
    "StepStatus",
    "WorkflowStep",
]
