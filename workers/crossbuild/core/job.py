"""
BuildJob — per-target state machine.

    PENDING -> RESOLVING_TOOLCHAIN -> PREPARING_DEPENDENCY
            -> COMPILING_DEPENDENCY -> COMPILING_MAIN -> SUCCEEDED

Failure exits lead from RESOLVING_TOOLCHAIN, COMPILING_DEPENDENCY and
COMPILING_MAIN into FAILED.  COMPILING_DEPENDENCY may loop back to
PREPARING_DEPENDENCY for a retry.  A cache hit jumps from
RESOLVING_TOOLCHAIN straight to SUCCEEDED.  Any non-terminal state may be
CANCELLED.  The artifact collector may demote SUCCEEDED to FAILED when the
artifact does not hold up.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional

from crossbuild.core.targets import TargetSpec
from crossbuild.enums import FailureClass, JobState, Mitigation, Phase
from crossbuild.errors import InvalidTransition

logger = logging.getLogger(__name__)

S = JobState

TRANSITIONS: Dict[JobState, FrozenSet[JobState]] = {
    S.PENDING: frozenset({S.RESOLVING_TOOLCHAIN}),
    S.RESOLVING_TOOLCHAIN: frozenset({S.PREPARING_DEPENDENCY, S.SUCCEEDED, S.FAILED}),
    S.PREPARING_DEPENDENCY: frozenset({S.COMPILING_DEPENDENCY, S.FAILED}),
    S.COMPILING_DEPENDENCY: frozenset({S.COMPILING_MAIN, S.PREPARING_DEPENDENCY, S.FAILED}),
    S.COMPILING_MAIN: frozenset({S.SUCCEEDED, S.FAILED}),
    S.SUCCEEDED: frozenset({S.FAILED}),
    S.FAILED: frozenset(),
    S.CANCELLED: frozenset(),
}


def now_iso() -> str:
    """Current UTC time as ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


@dataclass
class AttemptRecord:
    """One invocation of a build phase."""
    phase: Phase
    attempt: int
    exit_code: int
    duration_ms: int
    failure_class: Optional[FailureClass] = None
    mitigations: List[Mitigation] = field(default_factory=list)
    stdout_path: Optional[Path] = None
    stderr_path: Optional[Path] = None


@dataclass
class Transition:
    source: JobState
    dest: JobState
    at: str


@dataclass
class BuildJob:
    """One target's build. Owned by the runner that drives it."""
    target: TargetSpec
    state: JobState = JobState.PENDING
    failure_class: Optional[FailureClass] = None
    failure_detail: Optional[str] = None
    artifact_path: Optional[Path] = None
    retry_count: int = 0
    cache_key: Optional[str] = None
    cache_hit: bool = False
    toolchain_version: Optional[str] = None
    mitigations_applied: List[Mitigation] = field(default_factory=list)
    attempts: List[AttemptRecord] = field(default_factory=list)
    history: List[Transition] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.target.name

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def transition(self, dest: JobState) -> None:
        """Move to *dest*, enforcing the state machine."""
        cancelling = dest == JobState.CANCELLED and not self.is_terminal
        if not cancelling and dest not in TRANSITIONS[self.state]:
            raise InvalidTransition(self.state, dest)
        self.history.append(Transition(self.state, dest, now_iso()))
        logger.debug("[%s] %s -> %s", self.name, self.state.value, dest.value)
        self.state = dest

    def fail(self, failure_class: FailureClass, detail: str) -> None:
        """Enter FAILED with a classified cause."""
        self.transition(JobState.FAILED)
        self.failure_class = failure_class
        self.failure_detail = detail
        self.artifact_path = None
        logger.info("[%s] failed: %s (%s)", self.name, failure_class.value, detail)

    def abort(self, detail: str) -> None:
        """FAILED(UNKNOWN) from any non-terminal state.

        Only for exceptions caught at the job boundary, where the state the
        job was in has no failure edge of its own.
        """
        if self.is_terminal:
            return
        self.history.append(Transition(self.state, JobState.FAILED, now_iso()))
        self.state = JobState.FAILED
        self.failure_class = FailureClass.UNKNOWN
        self.failure_detail = detail

    def succeed(self, artifact_path: Path) -> None:
        self.transition(JobState.SUCCEEDED)
        self.artifact_path = artifact_path

    def cancel(self) -> None:
        if not self.is_terminal:
            self.transition(JobState.CANCELLED)
            self.failure_detail = "pipeline cancelled"

    def attempts_for(self, phase: Phase) -> List[AttemptRecord]:
        return [a for a in self.attempts if a.phase == phase]
