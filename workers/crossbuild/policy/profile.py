"""
Profile — build-policy descriptor and tunable parameters.

The profile encapsulates the policy knobs (which failures are retried,
which mitigations run and in what order, how cargo is invoked) so that the
core coordinator carries no opinions.  The "standard" and "ring fix" CI
workflows of old are two profiles of one orchestrator.
"""
from dataclasses import dataclass, field
from typing import FrozenSet, Tuple

from crossbuild.enums import FailureClass, Mitigation


@dataclass(frozen=True)
class Profile:
    """How the flagged dependency and the main library are built."""

    # Identity
    profile_id: str

    # The native dependency compiled in isolation first
    dependency_crate: str = "ring"

    # Retry policy: only transient classes belong here
    retryable: FrozenSet[FailureClass] = frozenset({FailureClass.CONCURRENT_FILE_COLLISION})

    # Mitigations applied in PREPARING_DEPENDENCY, in this order
    mitigations: Tuple[Mitigation, ...] = (
        Mitigation.SERIALIZE_SCRATCH,
        Mitigation.PIN_TOOLCHAIN,
        Mitigation.PREMATERIALIZE,
    )

    # Variable through which pre-materialized sources are handed to the build script
    pregenerated_env: str = "CROSSBUILD_PREGENERATED_DIR"

    # cargo argument templates; {crate} and {triple} are substituted
    dependency_args: Tuple[str, ...] = ("build", "-p", "{crate}", "--target", "{triple}", "--release")
    main_args: Tuple[str, ...] = ("build", "--lib", "--target", "{triple}", "--release")

    # Demote artifacts that are not ELF for the target machine
    strict_elf: bool = False

    extra_env: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    def is_retryable(self, failure_class: FailureClass) -> bool:
        return failure_class in self.retryable

    @classmethod
    def ring_fix(cls) -> "Profile":
        """Default profile: all mitigations, collision retry."""
        return cls(profile_id="android-ndk-cargo-ring")

    @classmethod
    def standard(cls) -> "Profile":
        """No dependency mitigations; failures are still classified and retried."""
        return cls(profile_id="android-ndk-cargo", mitigations=())
