"""
Schema — Pydantic models for orchestrator JSON outputs.

Two outputs per pipeline run:
  1. artifact_manifest.json — per-target artifact path (or absence), handed
     to the packaging step.
  2. pipeline_report.json   — overall result plus per-target breakdown with
     failure class and remediation hint.

Runtime contract fields (present in every output):
  package_name, orchestrator_version, profile_id, schema_version.
"""
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from crossbuild import ORCHESTRATOR_VERSION, PACKAGE_NAME, SCHEMA_VERSION


# ── Shared target description ────────────────────────────────────────────────

class TargetInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    arch: str
    triple: str
    abi: str
    api_level: int


# ── Artifact manifest ────────────────────────────────────────────────────────

class ElfMeta(BaseModel):
    """Minimal ELF header facts for a produced library."""
    model_config = ConfigDict(frozen=True)

    elf_type: str = ""      # ET_DYN, ET_EXEC, ...
    machine: str = ""       # EM_AARCH64, EM_ARM, ...
    elf_class: int = 0      # 32 | 64


class ManifestEntry(BaseModel):
    """One target's artifact, or its absence."""
    model_config = ConfigDict(frozen=True)

    target: TargetInfo
    status: str                         # terminal JobState value
    artifact_path: Optional[str] = None
    sha256: Optional[str] = None
    size_bytes: Optional[int] = None
    cache_hit: bool = False
    elf: Optional[ElfMeta] = None
    flags: List[str] = Field(default_factory=list)


class ArtifactManifest(BaseModel):
    """Read-only once published to the packaging collaborator."""
    model_config = ConfigDict(frozen=True)

    package_name: str = PACKAGE_NAME
    orchestrator_version: str = ORCHESTRATOR_VERSION
    schema_version: str = SCHEMA_VERSION
    profile_id: str

    entries: Dict[str, ManifestEntry] = Field(default_factory=dict)

    def artifact_for(self, arch: str) -> Optional[str]:
        entry = self.entries.get(arch)
        return entry.artifact_path if entry else None

    @property
    def published(self) -> Dict[str, str]:
        """arch -> path for every target that has an artifact."""
        return {
            arch: e.artifact_path
            for arch, e in self.entries.items()
            if e.artifact_path is not None
        }


# ── Pipeline report ──────────────────────────────────────────────────────────

class AttemptModel(BaseModel):
    phase: str
    attempt: int
    exit_code: int
    duration_ms: int = 0
    failure_class: Optional[str] = None
    mitigations: List[str] = Field(default_factory=list)
    stdout_path: Optional[str] = None
    stderr_path: Optional[str] = None


class TargetResult(BaseModel):
    """Terminal result for one requested target."""
    target: TargetInfo
    state: str
    succeeded: bool
    failure_class: Optional[str] = None
    failure_detail: Optional[str] = None
    remediation_hint: Optional[str] = None
    retry_count: int = 0
    cache_key: Optional[str] = None
    cache_hit: bool = False
    toolchain_version: Optional[str] = None
    artifact_path: Optional[str] = None
    mitigations_applied: List[str] = Field(default_factory=list)
    attempts: List[AttemptModel] = Field(default_factory=list)


class StatusCounts(BaseModel):
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    cancelled: int = 0


class PipelineReport(BaseModel):
    """Pipeline-level summary — pipeline_report.json."""

    package_name: str = PACKAGE_NAME
    orchestrator_version: str = ORCHESTRATOR_VERSION
    schema_version: str = SCHEMA_VERSION
    profile_id: str

    status: str                 # SUCCESS | PARTIAL | FAILED
    success: bool
    requested: List[str] = Field(default_factory=list)
    error: Optional[str] = None  # pipeline-fatal error, e.g. invalid targets
    counts: StatusCounts = Field(default_factory=StatusCounts)
    targets: List[TargetResult] = Field(default_factory=list)

    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def failed_targets(self) -> List[TargetResult]:
        return [t for t in self.targets if not t.succeeded]
