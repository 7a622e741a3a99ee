"""
crossbuild — cross-target build orchestrator for Android native libraries.

Expands a target matrix, resolves the NDK toolchain per target, builds the
flaky native dependency in isolation under a retry policy, then builds the
main library, collects artifacts and reports a single pass/fail signal.
"""

__version__ = "0.1.0"
ORCHESTRATOR_VERSION = "v1"
PACKAGE_NAME = "crossbuild"
SCHEMA_VERSION = "1.0"
