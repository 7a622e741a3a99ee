"""
Classify — map a failed tool invocation to a FailureClass.

Rules are ordered pattern tables over the tool's stderr/stdout.  The first
matching class wins; the tables are checked in the order of ``_RULES``,
which puts configuration problems ahead of compile errors because a missing
linker also makes cargo print "could not compile".

Policy only: nothing here runs processes or touches the filesystem.
"""
import re
from typing import List, Pattern, Tuple

from crossbuild.core.process import ToolResult
from crossbuild.enums import FailureClass, Phase

F = FailureClass


def _compile(patterns: List[str]) -> List[Pattern[str]]:
    return [re.compile(p, re.IGNORECASE | re.MULTILINE) for p in patterns]


# Linker for the target triple cannot be invoked
LINKER_PATTERNS = _compile([
    r"linker `[^`]*` not found",
    r"error: linker .* not found",
    r"could not exec the linker",
    r"unable to find linker",
    r"ld(\.lld)?: (command )?not found",
])

# No toolchain at all: compiler wrapper / rust target not installed
TOOLCHAIN_PATTERNS = _compile([
    r"failed to find tool",
    r"toolchain '[^']*' is not installed",
    r"the `[^`]*` target may not be installed",
    r"can't find crate for `(core|std)`",
    r"ANDROID_NDK_HOME.* not set",
])

# A previous partial build left a file the build step tries to create again
COLLISION_PATTERNS = _compile([
    r"File exists \(os error 17\)",
    r"\bEEXIST\b",
    r"Text file busy",
    r"failed to (create|rename|remove) .*(directory|file).*exists",
])

# A genuine compile error in the dependency source
COMPILE_PATTERNS = _compile([
    r"error: failed to run custom build command for `",
    r"error\[E\d{4}\]",
    r"error: could not compile `",
    r"fatal error: .*: No such file or directory",
    r"error: .*\.(c|S|h):\d+",
])

_RULES: List[Tuple[FailureClass, List[Pattern[str]]]] = [
    (F.LINKER_NOT_FOUND, LINKER_PATTERNS),
    (F.MISSING_TOOLCHAIN, TOOLCHAIN_PATTERNS),
    (F.CONCURRENT_FILE_COLLISION, COLLISION_PATTERNS),
    (F.DEPENDENCY_COMPILE_ERROR, COMPILE_PATTERNS),
]


def classify(result: ToolResult, phase: Phase) -> FailureClass:
    """
    Classify a failed invocation of *phase*.

    Timeouts and cancellations are UNKNOWN whatever the output says.  A
    program that could not be launched at all means the toolchain itself
    is missing.  Compile errors outside the dependency phase are UNKNOWN:
    the closed taxonomy only names the flagged dependency.
    """
    if result.timed_out or result.cancelled:
        return F.UNKNOWN
    if result.launch_error is not None:
        return F.MISSING_TOOLCHAIN

    text = f"{result.stderr}\n{result.stdout}"
    for failure_class, patterns in _RULES:
        if any(p.search(text) for p in patterns):
            if failure_class == F.DEPENDENCY_COMPILE_ERROR and phase != Phase.DEPENDENCY:
                return F.UNKNOWN
            return failure_class
    return F.UNKNOWN


def matched_rule(result: ToolResult) -> str:
    """First matching pattern text, for diagnostics. Empty if none matched."""
    text = f"{result.stderr}\n{result.stdout}"
    for _, patterns in _RULES:
        for p in patterns:
            m = p.search(text)
            if m:
                return m.group(0)
    return ""
