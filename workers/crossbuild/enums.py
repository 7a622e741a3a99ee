"""
Frozen vocabulary for job states, failure classes and mitigations.

These strings appear verbatim in ``pipeline_report.json`` and
``artifact_manifest.json``; renaming a member is a schema change and needs
a ``SCHEMA_VERSION`` bump.
"""

from __future__ import annotations

from enum import Enum, unique


# ═══════════════════════════════════════════════════════════════════════════════
# Job lifecycle
# ═══════════════════════════════════════════════════════════════════════════════

@unique
class JobState(str, Enum):
    """State of one per-target BuildJob."""

    PENDING              = "PENDING"
    RESOLVING_TOOLCHAIN  = "RESOLVING_TOOLCHAIN"
    PREPARING_DEPENDENCY = "PREPARING_DEPENDENCY"
    COMPILING_DEPENDENCY = "COMPILING_DEPENDENCY"
    COMPILING_MAIN       = "COMPILING_MAIN"
    SUCCEEDED            = "SUCCEEDED"
    FAILED               = "FAILED"
    CANCELLED            = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELLED)


# ═══════════════════════════════════════════════════════════════════════════════
# Failure taxonomy
# ═══════════════════════════════════════════════════════════════════════════════

@unique
class FailureClass(str, Enum):
    """Closed set of per-target failure causes.

    Drives both the retry policy and the remediation hint table.
    """

    MISSING_TOOLCHAIN         = "MISSING_TOOLCHAIN"
    CONCURRENT_FILE_COLLISION = "CONCURRENT_FILE_COLLISION"
    LINKER_NOT_FOUND          = "LINKER_NOT_FOUND"
    DEPENDENCY_COMPILE_ERROR  = "DEPENDENCY_COMPILE_ERROR"
    UNKNOWN                   = "UNKNOWN"


@unique
class Phase(str, Enum):
    """Tool-invoking phase of a job, used for classification and log names."""

    DEPENDENCY = "dependency"
    MAIN       = "main"


# ═══════════════════════════════════════════════════════════════════════════════
# Dependency mitigations
# ═══════════════════════════════════════════════════════════════════════════════

@unique
class Mitigation(str, Enum):
    """Prevention steps applied before compiling the flagged dependency."""

    SERIALIZE_SCRATCH = "SERIALIZE_SCRATCH"
    PIN_TOOLCHAIN     = "PIN_TOOLCHAIN"
    PREMATERIALIZE    = "PREMATERIALIZE"


# ═══════════════════════════════════════════════════════════════════════════════
# Artifact flags and pipeline status
# ═══════════════════════════════════════════════════════════════════════════════

@unique
class ArtifactFlag(str, Enum):
    """Flags raised by the artifact collector for one target."""

    NO_ARTIFACT     = "NO_ARTIFACT"
    EMPTY_ARTIFACT  = "EMPTY_ARTIFACT"
    NON_ELF_OUTPUT  = "NON_ELF_OUTPUT"
    ARCH_MISMATCH   = "ARCH_MISMATCH"
    DISCARDED       = "DISCARDED"


@unique
class PipelineStatus(str, Enum):
    SUCCESS = "SUCCESS"
    PARTIAL = "PARTIAL"
    FAILED  = "FAILED"
