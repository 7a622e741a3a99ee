"""
Target matrix — supported Android architectures and matrix expansion.

The supported set is closed: an identifier outside it aborts the whole
pipeline before any job is scheduled, so a typo in the declared targets can
never silently shrink coverage.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List

from crossbuild.config import DEFAULT_API_LEVEL
from crossbuild.errors import InvalidTarget

logger = logging.getLogger(__name__)


class Arch(str, Enum):
    """Architectures an Android release must cover."""
    AARCH64 = "aarch64"
    ARMV7 = "armv7"
    I686 = "i686"
    X86_64 = "x86_64"


@dataclass(frozen=True)
class TargetSpec:
    """One build target. Immutable once the matrix is expanded."""
    arch: Arch
    api_level: int
    triple: str         # Rust target triple
    clang_triple: str   # NDK clang wrapper prefix
    abi: str            # Android ABI directory (jniLibs/<abi>)

    @property
    def name(self) -> str:
        return self.arch.value

    @property
    def env_triple(self) -> str:
        """Triple as used in cc-rs variables: CC_aarch64_linux_android."""
        return self.triple.replace("-", "_")

    @property
    def cargo_linker_var(self) -> str:
        """Cargo linker variable: CARGO_TARGET_AARCH64_LINUX_ANDROID_LINKER."""
        return f"CARGO_TARGET_{self.env_triple.upper()}_LINKER"

    def linker_name(self) -> str:
        """Per-target clang wrapper shipped by the NDK."""
        return f"{self.clang_triple}{self.api_level}-clang"


# (rust triple, NDK clang prefix, Android ABI, ELF machine)
_TARGET_TABLE: Dict[Arch, tuple] = {
    Arch.AARCH64: ("aarch64-linux-android", "aarch64-linux-android", "arm64-v8a", "EM_AARCH64"),
    Arch.ARMV7: ("armv7-linux-androideabi", "armv7a-linux-androideabi", "armeabi-v7a", "EM_ARM"),
    Arch.I686: ("i686-linux-android", "i686-linux-android", "x86", "EM_386"),
    Arch.X86_64: ("x86_64-linux-android", "x86_64-linux-android", "x86_64", "EM_X86_64"),
}

# Accepted spellings: short arch name or full rust triple
_ALIASES: Dict[str, Arch] = {}
for _arch, (_triple, _clang, _abi, _machine) in _TARGET_TABLE.items():
    _ALIASES[_arch.value] = _arch
    _ALIASES[_triple] = _arch


def supported_targets() -> List[str]:
    """Short identifiers of every supported target, in canonical order."""
    return [a.value for a in Arch]


def expected_elf_machine(arch: Arch) -> str:
    """pyelftools ``e_machine`` value a library for *arch* must carry."""
    return _TARGET_TABLE[arch][3]


def make_target(arch: Arch, api_level: int = DEFAULT_API_LEVEL) -> TargetSpec:
    triple, clang_triple, abi, _ = _TARGET_TABLE[arch]
    return TargetSpec(
        arch=arch,
        api_level=api_level,
        triple=triple,
        clang_triple=clang_triple,
        abi=abi,
    )


def parse_target(identifier: str) -> Arch:
    """Map one identifier (short name or triple) to its Arch.

    Raises InvalidTarget for anything outside the enumeration.
    """
    key = identifier.strip().lower()
    if key not in _ALIASES:
        raise InvalidTarget([identifier], supported_targets())
    return _ALIASES[key]


def expand_matrix(
    identifiers: Iterable[str],
    api_level: int = DEFAULT_API_LEVEL,
) -> List[TargetSpec]:
    """
    Turn declared target identifiers into an ordered list of TargetSpec.

    Duplicates (including two spellings of one arch) are dropped keeping the
    first occurrence.  Every unknown identifier is collected and reported in
    a single InvalidTarget; in that case nothing is returned.
    """
    identifiers = list(identifiers)
    unknown: List[str] = []
    seen: Dict[Arch, None] = {}

    for ident in identifiers:
        key = ident.strip().lower()
        arch = _ALIASES.get(key)
        if arch is None:
            unknown.append(ident)
            continue
        seen.setdefault(arch, None)

    if unknown or not identifiers:
        raise InvalidTarget(unknown, supported_targets())

    specs = [make_target(arch, api_level) for arch in seen]
    logger.info(
        "Expanded %d declared target(s) into %d job(s): %s",
        len(identifiers), len(specs), ", ".join(s.name for s in specs),
    )
    return specs
