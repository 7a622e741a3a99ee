"""
Configuration — the explicit settings object handed to the resolver,
the dependency coordinator and the job runner.

Nothing below ``crossbuild.core`` reads environment variables; the worker
and the CLI build an ``OrchestratorConfig`` once (``from_env``) and pass it
down.
"""
from __future__ import annotations

import os
import platform
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping, Optional

DEFAULT_API_LEVEL = 24
DEFAULT_STEP_TIMEOUT = 1800  # seconds, one cargo invocation
DEFAULT_PROBE_TIMEOUT = 10   # seconds, `clang --version`


def detect_host_tag() -> str:
    """NDK prebuilt directory name for the machine running the build."""
    system = platform.system().lower()
    if system == "darwin":
        return "darwin-x86_64"
    if system == "windows":
        return "windows-x86_64"
    return "linux-x86_64"


@dataclass(frozen=True)
class OrchestratorConfig:
    """Everything a pipeline run needs to know about its environment."""

    project_dir: Path = field(default_factory=Path.cwd)
    output_dir: Path = Path("crossbuild-out")
    dependency_scratch_dir: Path = Path("crossbuild-out/scratch")
    cache_dir: Optional[Path] = None

    # Toolchain discovery
    toolchain_root_override: Optional[Path] = None
    ndk_root: Optional[Path] = None
    host_tag: str = field(default_factory=detect_host_tag)
    api_level: int = DEFAULT_API_LEVEL

    # Dependency policy inputs
    max_dependency_retries: int = 1
    pinned_toolchain: Optional[str] = None
    pregenerated_dir: Optional[Path] = None

    # Execution
    cargo_bin: str = "cargo"
    artifact_name: str = "app_lib"
    lockfile: Optional[Path] = None
    step_timeout: float = DEFAULT_STEP_TIMEOUT
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    max_parallel_jobs: int = 4

    def __post_init__(self):
        if self.max_dependency_retries < 0:
            raise ValueError("max_dependency_retries must be >= 0")
        if self.max_parallel_jobs < 1:
            raise ValueError("max_parallel_jobs must be >= 1")
        if self.api_level < 1:
            raise ValueError("api_level must be positive")

    @property
    def lockfile_path(self) -> Path:
        """Dependency lock file; defaults to Cargo.lock in the project."""
        if self.lockfile is not None:
            return self.lockfile
        return self.project_dir / "Cargo.lock"

    def read_lock_contents(self) -> bytes:
        """Lock file bytes, or empty bytes when the project has no lock file."""
        path = self.lockfile_path
        if path.is_file():
            return path.read_bytes()
        return b""

    def with_overrides(self, **changes) -> "OrchestratorConfig":
        """Copy with selected fields replaced (None values are ignored)."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "OrchestratorConfig":
        """Build a config from ``CROSSBUILD_*`` variables.

        ``ANDROID_NDK_HOME`` / ``NDK_HOME`` are honoured for the NDK root,
        matching what the Android Gradle and Tauri tooling export.
        """
        env = os.environ if environ is None else environ

        def _path(name: str) -> Optional[Path]:
            value = env.get(name)
            return Path(value) if value else None

        kwargs = {}
        if env.get("CROSSBUILD_PROJECT_DIR"):
            kwargs["project_dir"] = Path(env["CROSSBUILD_PROJECT_DIR"])
        if env.get("CROSSBUILD_OUTPUT_DIR"):
            kwargs["output_dir"] = Path(env["CROSSBUILD_OUTPUT_DIR"])
        if env.get("CROSSBUILD_SCRATCH_DIR"):
            kwargs["dependency_scratch_dir"] = Path(env["CROSSBUILD_SCRATCH_DIR"])
        if env.get("CROSSBUILD_CARGO"):
            kwargs["cargo_bin"] = env["CROSSBUILD_CARGO"]
        if env.get("CROSSBUILD_ARTIFACT_NAME"):
            kwargs["artifact_name"] = env["CROSSBUILD_ARTIFACT_NAME"]
        if env.get("CROSSBUILD_PINNED_TOOLCHAIN"):
            kwargs["pinned_toolchain"] = env["CROSSBUILD_PINNED_TOOLCHAIN"]
        if env.get("CROSSBUILD_API_LEVEL"):
            kwargs["api_level"] = int(env["CROSSBUILD_API_LEVEL"])
        if env.get("CROSSBUILD_MAX_RETRIES"):
            kwargs["max_dependency_retries"] = int(env["CROSSBUILD_MAX_RETRIES"])
        if env.get("CROSSBUILD_STEP_TIMEOUT"):
            kwargs["step_timeout"] = float(env["CROSSBUILD_STEP_TIMEOUT"])
        if env.get("CROSSBUILD_JOBS"):
            kwargs["max_parallel_jobs"] = int(env["CROSSBUILD_JOBS"])

        return cls(
            toolchain_root_override=_path("CROSSBUILD_TOOLCHAIN_ROOT"),
            ndk_root=_path("ANDROID_NDK_HOME") or _path("NDK_HOME"),
            cache_dir=_path("CROSSBUILD_CACHE_DIR"),
            pregenerated_dir=_path("CROSSBUILD_PREGENERATED_DIR"),
            lockfile=_path("CROSSBUILD_LOCKFILE"),
            **kwargs,
        )
