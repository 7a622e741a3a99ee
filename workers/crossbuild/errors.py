"""Exception types raised across the orchestrator.

Per-target build failures are recorded on the BuildJob as a FailureClass,
not raised; the exceptions here cover pipeline-level conditions and the
toolchain resolver's contract.
"""

from __future__ import annotations

from typing import Dict, Optional, Sequence

from crossbuild.enums import FailureClass, JobState


class CrossBuildError(Exception):
    """Base class for orchestrator errors."""

    def __init__(self, message: str, *, context: Optional[Dict[str, object]] = None) -> None:
        super().__init__(message)
        self.context = context or {}


class InvalidTarget(CrossBuildError, ValueError):
    """One or more declared target identifiers are not supported.

    Fatal for the whole pipeline: raised before any job starts.
    """

    def __init__(self, identifiers: Sequence[str], supported: Sequence[str]) -> None:
        self.identifiers = list(identifiers)
        self.supported = list(supported)
        if self.identifiers:
            message = (
                f"Unsupported target(s): {', '.join(repr(i) for i in self.identifiers)}. "
                f"Supported: {', '.join(self.supported)}"
            )
        else:
            message = "No targets declared"
        super().__init__(message, context={"identifiers": self.identifiers})


class ResolutionError(CrossBuildError):
    """The toolchain for a target could not be located or is not usable."""

    failure_class = FailureClass.MISSING_TOOLCHAIN

    def __init__(self, target: str, candidates: Sequence[str], reason: str) -> None:
        self.target = target
        self.candidates = list(candidates)
        self.reason = reason
        super().__init__(
            f"No usable toolchain for {target}: {reason}",
            context={"target": target, "candidates": self.candidates},
        )


class InvalidTransition(CrossBuildError):
    """A BuildJob was asked to move along an edge its state machine lacks."""

    def __init__(self, source: JobState, dest: JobState) -> None:
        self.source = source
        self.dest = dest
        super().__init__(f"Illegal job transition {source.value} -> {dest.value}")


class PipelineCancelled(CrossBuildError):
    """Raised inside a job when the pipeline-wide cancel event is set."""
