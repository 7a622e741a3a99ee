"""
Dependency build coordinator — compile the flagged native dependency in
isolation, before the main library, under a mitigation and retry policy.

Per attempt:

    PREPARING_DEPENDENCY   apply the mitigations this job has not tried yet
                           (plus the remediation for the failure that caused
                           a retry)
    COMPILING_DEPENDENCY   cargo build -p <crate> for the target triple

A failed compile is classified; only retryable classes loop back to
PREPARING_DEPENDENCY, and only while ``retry_count`` is below
``config.max_dependency_retries``.  Everything else is terminal for the
target.

The dependency is built into ``<scratch>/target``; the main build reuses
that directory so cargo picks up the already-compiled dependency instead of
rebuilding it without mitigations.
"""
from __future__ import annotations

import logging
import shutil
import threading
from pathlib import Path
from typing import Dict, List, Optional

from crossbuild.config import OrchestratorConfig
from crossbuild.core.job import AttemptRecord, BuildJob
from crossbuild.core.process import ToolResult, run_tool, write_logs
from crossbuild.core.toolchain import ToolchainHandle
from crossbuild.enums import FailureClass, JobState, Mitigation, Phase
from crossbuild.errors import PipelineCancelled
from crossbuild.policy.classify import classify, matched_rule
from crossbuild.policy.profile import Profile

logger = logging.getLogger(__name__)


class DependencyBuildCoordinator:
    """Owns the dependency phase of every job it is handed.

    Holds no per-job state: everything attempt-specific lives on the
    BuildJob, so one coordinator can serve jobs running in parallel.
    """

    def __init__(
        self,
        config: OrchestratorConfig,
        profile: Profile,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.config = config
        self.profile = profile
        self.cancel_event = cancel_event

    # -----------------------------------------------------------------
    # Layout
    # -----------------------------------------------------------------

    def scratch_dir(self, job: BuildJob) -> Path:
        """Per-target scratch directory; never shared between targets."""
        return Path(self.config.dependency_scratch_dir) / job.target.arch.value

    def target_dir(self, job: BuildJob) -> Path:
        return self.scratch_dir(job) / "target"

    def logs_dir(self, job: BuildJob) -> Path:
        return Path(self.config.output_dir) / "logs" / job.target.arch.value

    # -----------------------------------------------------------------
    # Environment
    # -----------------------------------------------------------------

    def _common_env(self, job: BuildJob, toolchain: ToolchainHandle) -> Dict[str, str]:
        env = toolchain.cargo_env()
        env["CARGO_TARGET_DIR"] = str(self.target_dir(job))
        env.update(dict(self.profile.extra_env))
        if Mitigation.PIN_TOOLCHAIN in job.mitigations_applied and self.config.pinned_toolchain:
            env["RUSTUP_TOOLCHAIN"] = self.config.pinned_toolchain
        return env

    def dependency_env(self, job: BuildJob, toolchain: ToolchainHandle) -> Dict[str, str]:
        """Environment for the isolated dependency compile."""
        env = self._common_env(job, toolchain)
        if Mitigation.SERIALIZE_SCRATCH in job.mitigations_applied:
            env["CARGO_BUILD_JOBS"] = "1"
        if Mitigation.PREMATERIALIZE in job.mitigations_applied:
            env[self.profile.pregenerated_env] = str(self.scratch_dir(job) / "pregenerated")
        return env

    def main_env(self, job: BuildJob, toolchain: ToolchainHandle) -> Dict[str, str]:
        """Environment for the main build, sharing the prepared target dir."""
        env = self._common_env(job, toolchain)
        if Mitigation.PREMATERIALIZE in job.mitigations_applied:
            env[self.profile.pregenerated_env] = str(self.scratch_dir(job) / "pregenerated")
        return env

    def dependency_command(self, job: BuildJob) -> List[str]:
        args = [
            a.format(crate=self.profile.dependency_crate, triple=job.target.triple)
            for a in self.profile.dependency_args
        ]
        return [self.config.cargo_bin] + args

    # -----------------------------------------------------------------
    # PREPARING_DEPENDENCY
    # -----------------------------------------------------------------

    def _clear_scratch(self, job: BuildJob) -> None:
        scratch = self.scratch_dir(job)
        if scratch.exists():
            shutil.rmtree(scratch)
            logger.info("[%s] Cleared dependency scratch dir %s", job.name, scratch)
        scratch.mkdir(parents=True, exist_ok=True)

    def _apply(self, job: BuildJob, mitigation: Mitigation) -> bool:
        """Apply one mitigation. Returns False when it does not apply here."""
        if mitigation == Mitigation.SERIALIZE_SCRATCH:
            self._clear_scratch(job)
            return True

        if mitigation == Mitigation.PIN_TOOLCHAIN:
            if not self.config.pinned_toolchain:
                logger.debug("[%s] No pinned toolchain configured; skipping pin", job.name)
                return False
            logger.info("[%s] Pinning compiler toolchain to %s", job.name, self.config.pinned_toolchain)
            return True

        if mitigation == Mitigation.PREMATERIALIZE:
            source = self.config.pregenerated_dir
            if source is None:
                logger.debug("[%s] No pregenerated artifacts configured", job.name)
                return False
            if not Path(source).is_dir():
                logger.warning("[%s] Pregenerated dir %s does not exist; skipping", job.name, source)
                return False
            dest = self.scratch_dir(job) / "pregenerated"
            shutil.copytree(source, dest, dirs_exist_ok=True)
            logger.info("[%s] Pre-materialized intermediate artifacts into %s", job.name, dest)
            return True

        raise ValueError(f"Unhandled mitigation {mitigation}")

    def prepare(self, job: BuildJob, retry_cause: Optional[FailureClass] = None) -> List[Mitigation]:
        """
        Apply, in profile order, the mitigations *job* has not tried yet.

        On a retry caused by a file collision the scratch directory is
        cleared unconditionally, even when every mitigation already ran.
        Returns the mitigations newly applied by this call.
        """
        if retry_cause == FailureClass.CONCURRENT_FILE_COLLISION:
            self._clear_scratch(job)
            if Mitigation.PREMATERIALIZE in job.mitigations_applied:
                # clearing wiped the copied sources; put them back
                self._apply(job, Mitigation.PREMATERIALIZE)

        applied: List[Mitigation] = []
        for mitigation in self.profile.mitigations:
            if mitigation in job.mitigations_applied:
                continue
            if self._apply(job, mitigation):
                job.mitigations_applied.append(mitigation)
                applied.append(mitigation)

        self.scratch_dir(job).mkdir(parents=True, exist_ok=True)
        return applied

    # -----------------------------------------------------------------
    # Invocation shared with the main build
    # -----------------------------------------------------------------

    def invoke(
        self,
        job: BuildJob,
        phase: Phase,
        cmd: List[str],
        env: Dict[str, str],
        toolchain: ToolchainHandle,
        mitigations: Optional[List[Mitigation]] = None,
    ) -> Optional[FailureClass]:
        """
        Run one compile phase for *job* and record the attempt.

        Returns None on success, the FailureClass otherwise.  Raises
        PipelineCancelled if the cancel event fired during the run.
        """
        attempt_no = len(job.attempts_for(phase)) + 1

        if not toolchain.linker_usable():
            record = AttemptRecord(
                phase=phase,
                attempt=attempt_no,
                exit_code=-1,
                duration_ms=0,
                failure_class=FailureClass.LINKER_NOT_FOUND,
                mitigations=list(mitigations or []),
            )
            job.attempts.append(record)
            logger.warning("[%s] Linker %s is not executable", job.name, toolchain.linker)
            return FailureClass.LINKER_NOT_FOUND

        logger.info("[%s] %s attempt %d: %s", job.name, phase.value, attempt_no, " ".join(cmd))
        result = run_tool(
            cmd,
            cwd=Path(self.config.project_dir),
            env=env,
            timeout=self.config.step_timeout,
            cancel_event=self.cancel_event,
        )
        log_paths = write_logs(result, self.logs_dir(job), f"{phase.value}.attempt{attempt_no}")

        failure = None if result.ok else classify(result, phase)
        job.attempts.append(AttemptRecord(
            phase=phase,
            attempt=attempt_no,
            exit_code=result.exit_code,
            duration_ms=result.duration_ms,
            failure_class=failure,
            mitigations=list(mitigations or []),
            stdout_path=log_paths["stdout"],
            stderr_path=log_paths["stderr"],
        ))

        if result.cancelled:
            raise PipelineCancelled(f"{job.name}: {phase.value} cancelled")
        if failure is not None:
            self._log_failure(job, phase, result, failure)
        return failure

    def _log_failure(self, job: BuildJob, phase: Phase, result: ToolResult, failure: FailureClass):
        rule = matched_rule(result)
        logger.warning(
            "[%s] %s failed (exit=%d, %s)%s",
            job.name, phase.value, result.exit_code, failure.value,
            f" matched: {rule!r}" if rule else "",
        )

    # -----------------------------------------------------------------
    # Dependency phase driver
    # -----------------------------------------------------------------

    def should_retry(self, job: BuildJob, failure: FailureClass) -> bool:
        return (
            self.profile.is_retryable(failure)
            and job.retry_count < self.config.max_dependency_retries
        )

    def build_dependency(self, job: BuildJob, toolchain: ToolchainHandle) -> bool:
        """
        Drive *job* from RESOLVING_TOOLCHAIN through the dependency phase.

        Returns True with the job left in COMPILING_DEPENDENCY (ready for the
        main build), or False with the job FAILED.
        """
        retry_cause: Optional[FailureClass] = None
        while True:
            job.transition(JobState.PREPARING_DEPENDENCY)
            try:
                applied = self.prepare(job, retry_cause)
            except OSError as e:
                logger.error("[%s] Dependency preparation failed: %s", job.name, e, exc_info=True)
                job.fail(FailureClass.UNKNOWN, f"dependency preparation failed: {e}")
                return False

            job.transition(JobState.COMPILING_DEPENDENCY)
            failure = self.invoke(
                job,
                Phase.DEPENDENCY,
                self.dependency_command(job),
                self.dependency_env(job, toolchain),
                toolchain,
                mitigations=applied,
            )
            if failure is None:
                logger.info("[%s] Dependency %s built", job.name, self.profile.dependency_crate)
                return True

            if self.should_retry(job, failure):
                job.retry_count += 1
                retry_cause = failure
                logger.warning(
                    "[%s] Retrying dependency build (%d/%d) after %s",
                    job.name, job.retry_count, self.config.max_dependency_retries, failure.value,
                )
                continue

            job.fail(failure, f"{self.profile.dependency_crate} build failed")
            return False
