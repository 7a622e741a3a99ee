"""
Toolchain resolution — locate a usable NDK clang toolchain for a target.

Candidate order (first usable wins):
  1. ``config.toolchain_root_override``  — an explicit toolchain root
  2. ``config.ndk_root``                 — well-known NDK layout
     ``<ndk>/toolchains/llvm/prebuilt/<host_tag>``
  3. the optional acquisition collaborator

A candidate is usable when ``bin/clang`` is an executable file that prints
a version line.  A path that exists but cannot be executed is treated
exactly like a missing one.  Resolution only probes; it never installs.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol, Tuple

from crossbuild.config import OrchestratorConfig
from crossbuild.core.process import is_executable, run_tool
from crossbuild.core.targets import TargetSpec
from crossbuild.errors import ResolutionError

logger = logging.getLogger(__name__)

_VERSION_RE = re.compile(r"clang version\s+(\S+)")


@dataclass(frozen=True)
class ToolchainHandle:
    """Resolved compiler/linker for one target."""
    target: TargetSpec
    root: Path
    bin_dir: Path
    compiler: Path
    linker: Path
    archiver: Path
    version: str
    source: str   # "override" | "ndk_root" | "acquired"

    def is_valid(self) -> bool:
        """False once the installation directory has disappeared."""
        return self.root.exists() and self.compiler.exists()

    def linker_usable(self) -> bool:
        return is_executable(self.linker)

    def cargo_env(self) -> dict:
        """cc-rs and cargo variables routing this target to the NDK tools."""
        t = self.target
        return {
            f"CC_{t.env_triple}": str(self.linker),
            f"AR_{t.env_triple}": str(self.archiver),
            t.cargo_linker_var: str(self.linker),
        }


class ToolchainAcquirer(Protocol):
    """External collaborator that can obtain a toolchain root for a target."""

    def acquire(self, spec: TargetSpec) -> Path:
        ...


class ToolchainResolver:
    """Resolves a ToolchainHandle for a TargetSpec. Read-only probing."""

    def __init__(
        self,
        config: OrchestratorConfig,
        acquirer: Optional[ToolchainAcquirer] = None,
    ):
        self.config = config
        self.acquirer = acquirer

    # -----------------------------------------------------------------
    # Candidates
    # -----------------------------------------------------------------

    def candidates(self) -> List[Tuple[str, Path]]:
        """Toolchain roots to try, in preference order."""
        found: List[Tuple[str, Path]] = []
        if self.config.toolchain_root_override is not None:
            found.append(("override", Path(self.config.toolchain_root_override)))
        if self.config.ndk_root is not None:
            prebuilt = (
                Path(self.config.ndk_root)
                / "toolchains" / "llvm" / "prebuilt" / self.config.host_tag
            )
            found.append(("ndk_root", prebuilt))
        return found

    # -----------------------------------------------------------------
    # Probing
    # -----------------------------------------------------------------

    def _probe(self, spec: TargetSpec, source: str, root: Path) -> Optional[ToolchainHandle]:
        """Return a handle if *root* holds a usable toolchain, else None."""
        bin_dir = root / "bin"
        compiler = bin_dir / "clang"
        if not is_executable(compiler):
            logger.debug("No executable clang under %s", bin_dir)
            return None

        result = run_tool([str(compiler), "--version"], timeout=self.config.probe_timeout)
        if not result.ok:
            logger.debug("clang probe failed under %s: %s", bin_dir, result.stderr.strip())
            return None

        version = parse_clang_version(result.stdout)
        if version is None:
            logger.debug("clang under %s did not report a version", bin_dir)
            return None

        return ToolchainHandle(
            target=spec,
            root=root,
            bin_dir=bin_dir,
            compiler=compiler,
            linker=bin_dir / spec.linker_name(),
            archiver=bin_dir / "llvm-ar",
            version=version,
            source=source,
        )

    def resolve(self, spec: TargetSpec) -> ToolchainHandle:
        """
        Resolve the toolchain for *spec*.

        Raises ResolutionError (failure class MISSING_TOOLCHAIN) when no
        candidate is usable.
        """
        tried: List[str] = []
        for source, root in self.candidates():
            tried.append(str(root))
            handle = self._probe(spec, source, root)
            if handle is not None:
                logger.info(
                    "Resolved toolchain for %s: %s (clang %s, via %s)",
                    spec.name, handle.bin_dir, handle.version, source,
                )
                return handle

        if self.acquirer is not None:
            try:
                acquired_root = self.acquirer.acquire(spec)
            except Exception as e:
                logger.warning("Toolchain acquisition failed for %s: %s", spec.name, e)
                raise ResolutionError(spec.name, tried, f"acquisition failed: {e}") from e
            tried.append(str(acquired_root))
            handle = self._probe(spec, "acquired", Path(acquired_root))
            if handle is not None:
                logger.info("Acquired toolchain for %s at %s", spec.name, handle.bin_dir)
                return handle

        if not tried:
            reason = "no toolchain root configured (set an override or the NDK root)"
        else:
            reason = "no executable clang reporting a version in any candidate"
        raise ResolutionError(spec.name, tried, reason)


def parse_clang_version(output: str) -> Optional[str]:
    """Extract the version from ``clang --version`` output.

    Falls back to the first non-empty line when the usual
    ``clang version X`` marker is absent.
    """
    match = _VERSION_RE.search(output)
    if match:
        return match.group(1)
    for line in output.splitlines():
        if line.strip():
            return line.strip()
    return None
