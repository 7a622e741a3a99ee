"""
Remediation hints — fixed lookup table keyed by FailureClass.

The classes are a closed enumeration, so the table is exhaustive and
never inferred from log contents.
"""
from typing import Dict

from crossbuild.enums import FailureClass

REMEDIATION_HINTS: Dict[FailureClass, str] = {
    FailureClass.MISSING_TOOLCHAIN: (
        "No usable NDK toolchain was found for this target. Install the Android NDK "
        "and point ANDROID_NDK_HOME (or the toolchain root override) at it, and run "
        "`rustup target add <triple>`."
    ),
    FailureClass.CONCURRENT_FILE_COLLISION: (
        "A previous partial build left files in the dependency scratch directory. "
        "Clear the scratch directory and rebuild with serialized jobs (CARGO_BUILD_JOBS=1)."
    ),
    FailureClass.LINKER_NOT_FOUND: (
        "The per-target linker could not be invoked. Check the linker mapping for this "
        "triple (CARGO_TARGET_<TRIPLE>_LINKER) and that the NDK ships the "
        "<triple><api>-clang wrapper for the requested API level."
    ),
    FailureClass.DEPENDENCY_COMPILE_ERROR: (
        "The native dependency failed to compile. Pin a known-compatible compiler "
        "toolchain or dependency version; retrying without changes will not help."
    ),
    FailureClass.UNKNOWN: (
        "Unclassified failure (timeout, unexpected exit code or invalid artifact). "
        "Inspect the raw build logs attached to this target."
    ),
}


def hint_for(failure_class: FailureClass) -> str:
    return REMEDIATION_HINTS[failure_class]
