# startup/stage_models.py
# -*- coding: utf-8 -*-
"""
Data types passed between the stage catalogue, the stage runner and the
orchestrator.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional, Tuple

if TYPE_CHECKING:
    from startup.stages.base import StageAction


@dataclass(frozen=True)
class ActionResult:
    """Outcome of a single StageAction.run()."""

    exit_code: int = 0
    already_configured: bool = False
    detail: str = ""

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True)
class Stage:
    """One provisioning step. Built once at startup from the settings."""

    name: str
    description: str
    action: "StageAction"
    enabled: bool = True
    post_delay: int = 0
    retry: bool = False
    required_settings: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RunResult:
    """Outcome of one stage invocation, as recorded by the orchestrator."""

    stage_name: str
    succeeded: bool
    exit_code: int
    duration: float = 0.0
    skipped: bool = False
    already_configured: bool = False
    message: str = ""

    @property
    def status_label(self) -> str:
        if self.skipped:
            return "SKIPPED"
        if not self.succeeded:
            return "FAILED"
        if self.already_configured:
            return "OK (already configured)"
        return "OK"


class RunState(Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    ABORTED = "aborted"
    COMPLETED = "completed"


@dataclass
class OrchestrationReport:
    state: RunState
    results: Tuple[RunResult, ...] = field(default_factory=tuple)
    exit_code: int = 0
    failed_stage: Optional[str] = None
    summary_path: Optional[str] = None
