"""Minimal saga runner: ordered stages with a compensation stack.

Stages run synchronously in the order the caller invokes them. A stage that
registers a compensation pushes it onto a stack; ``compensate()`` unwinds the
stack in reverse order, logging (never raising) compensation failures so the
caller can surface the original error.

Usage:
    saga = Saga("provision", correlation_id="abc")
    account = saga.step("create_account", create, compensation=lambda acc: delete(acc.id))
    avatar = saga.tolerate("upload_avatar", upload, default=None)
    try:
        saga.step("insert_profile", insert)
    except RosterError:
        saga.compensate()
        raise
"""
from __future__ import annotations
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class StageStatus(Enum):
    """Outcome of a single stage."""
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    COMPENSATED = "compensated"
    COMPENSATION_FAILED = "compensation_failed"


@dataclass
class StageRecord:
    """Trace entry for one executed stage."""
    name: str
    status: StageStatus
    error: Optional[str] = None


@dataclass
class Saga:
    """Tracks stage outcomes and pending compensations for one request."""
    name: str
    correlation_id: str = ""
    stages: list[StageRecord] = field(default_factory=list)
    _compensations: list[tuple[str, Callable[[], Any]]] = field(default_factory=list, repr=False)

    def __post_init__(self):
        if not self.correlation_id:
            self.correlation_id = uuid.uuid4().hex[:12]

    def completed(self, name: str) -> bool:
        """True if the named stage ran to completion."""
        return any(s.name == name and s.status is StageStatus.COMPLETED for s in self.stages)

    def last_failure(self) -> str:
        """Name of the most recent failed stage, or empty string."""
        for stage in reversed(self.stages):
            if stage.status is StageStatus.FAILED:
                return stage.name
        return ""

    def _log_prefix(self) -> str:
        return f"[{self.name}:{self.correlation_id}]"

    def step(
        self,
        name: str,
        action: Callable[[], Any],
        compensation: Optional[Callable[[Any], Any]] = None,
    ) -> Any:
        """Run a fatal stage. Exceptions propagate to the caller.

        Args:
            name: Stage name used in logs and the trace
            action: Zero-argument callable performing the stage
            compensation: Optional callable receiving the stage result; pushed
                onto the compensation stack only if the stage succeeds
        """
        try:
            result = action()
        except Exception as exc:
            self.stages.append(StageRecord(name, StageStatus.FAILED, str(exc)))
            logger.warning("%s stage %s failed: %s", self._log_prefix(), name, exc)
            raise
        self.stages.append(StageRecord(name, StageStatus.COMPLETED))
        logger.debug("%s stage %s completed", self._log_prefix(), name)
        if compensation is not None:
            self._compensations.append((name, lambda: compensation(result)))
        return result

    def tolerate(
        self,
        name: str,
        action: Callable[[], Any],
        default: Any = None,
        errors: tuple[type[BaseException], ...] = (Exception,),
    ) -> Any:
        """Run a non-fatal stage; listed errors are logged and ``default`` returned."""
        try:
            result = action()
        except errors as exc:
            self.stages.append(StageRecord(name, StageStatus.SKIPPED, str(exc)))
            logger.warning("%s stage %s skipped after error: %s", self._log_prefix(), name, exc)
            return default
        self.stages.append(StageRecord(name, StageStatus.COMPLETED))
        return result

    def compensate(self) -> list[str]:
        """Unwind registered compensations in reverse order.

        Returns:
            Names of stages whose compensation raised
        """
        failures: list[str] = []
        while self._compensations:
            name, undo = self._compensations.pop()
            try:
                undo()
            except Exception as exc:
                failures.append(name)
                self.stages.append(StageRecord(name, StageStatus.COMPENSATION_FAILED, str(exc)))
                logger.error("%s compensation for %s failed: %s", self._log_prefix(), name, exc)
                continue
            self.stages.append(StageRecord(name, StageStatus.COMPENSATED))
            logger.info("%s compensated %s", self._log_prefix(), name)
        return failures

    def trace(self) -> list[dict]:
        """Serializable stage trace (used in audit details)."""
        return [
            {"stage": s.name, "status": s.status.value, **({"error": s.error} if s.error else {})}
            for s in self.stages
        ]
