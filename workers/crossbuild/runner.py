"""
Orchestrator runner — top-level orchestration: target list → jobs →
manifest + report.

``BuildJobRunner`` drives one target through its state machine.
``run_pipeline`` expands the matrix, runs one runner per target on a thread
pool, then collects artifacts and builds the report.  ``main`` is the CLI.
"""
from __future__ import annotations

import argparse
import logging
import shutil
import sys
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from crossbuild.config import OrchestratorConfig
from crossbuild.core.artifacts import collect_artifacts
from crossbuild.core.cache import CacheStore, FileCacheStore, derive_cache_key
from crossbuild.core.dependency import DependencyBuildCoordinator
from crossbuild.core.job import BuildJob
from crossbuild.core.targets import TargetSpec, expand_matrix, supported_targets
from crossbuild.core.toolchain import ToolchainAcquirer, ToolchainHandle, ToolchainResolver
from crossbuild.enums import FailureClass, JobState, Phase
from crossbuild.errors import InvalidTarget, PipelineCancelled, ResolutionError
from crossbuild.io.schema import ArtifactManifest, PipelineReport
from crossbuild.io.writer import write_outputs
from crossbuild.policy.profile import Profile
from crossbuild.reporter import build_report, log_report, render_annotations

logger = logging.getLogger(__name__)


# =============================================================================
# One target
# =============================================================================

class BuildJobRunner:
    """Drives a single BuildJob from PENDING to a terminal state."""

    def __init__(
        self,
        config: OrchestratorConfig,
        profile: Profile,
        resolver: ToolchainResolver,
        coordinator: DependencyBuildCoordinator,
        lock_contents: bytes,
        cache_store: Optional[CacheStore] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.config = config
        self.profile = profile
        self.resolver = resolver
        self.coordinator = coordinator
        self.lock_contents = lock_contents
        self.cache_store = cache_store
        self.cancel_event = cancel_event or threading.Event()

    def _check_cancel(self, job: BuildJob) -> None:
        if self.cancel_event.is_set():
            raise PipelineCancelled(f"{job.name}: cancelled")

    def artifact_dest(self, spec: TargetSpec) -> Path:
        """Published location: <output>/artifacts/<abi>/lib<name>.so"""
        return (
            Path(self.config.output_dir) / "artifacts" / spec.abi
            / f"lib{self.config.artifact_name}.so"
        )

    def built_library(self, job: BuildJob) -> Path:
        return (
            self.coordinator.target_dir(job) / job.target.triple / "release"
            / f"lib{self.config.artifact_name}.so"
        )

    def main_command(self, job: BuildJob) -> List[str]:
        args = [a.format(triple=job.target.triple) for a in self.profile.main_args]
        return [self.config.cargo_bin] + args

    # -----------------------------------------------------------------

    def run(self, spec: TargetSpec) -> BuildJob:
        """Build *spec*. Never raises: every outcome ends up on the job."""
        job = BuildJob(target=spec)
        try:
            self._check_cancel(job)
            self._drive(job)
        except PipelineCancelled:
            logger.warning("[%s] Cancelled in %s", job.name, job.state.value)
            job.cancel()
        except Exception as e:
            logger.error("[%s] Unexpected error: %s", job.name, e, exc_info=True)
            job.abort(f"unexpected error: {e}")
        return job

    def _drive(self, job: BuildJob) -> None:
        spec = job.target

        # ── RESOLVING_TOOLCHAIN ──────────────────────────────────────
        job.transition(JobState.RESOLVING_TOOLCHAIN)
        try:
            toolchain = self.resolver.resolve(spec)
        except ResolutionError as e:
            job.fail(e.failure_class, str(e))
            return
        job.toolchain_version = toolchain.version

        # ── Cache lookup ─────────────────────────────────────────────
        key = derive_cache_key(self.lock_contents, spec, toolchain.version)
        job.cache_key = key.value
        if self.cache_store is not None:
            cached = self.cache_store.get(key)
            if cached is not None:
                dest = self._publish(job, cached)
                job.cache_hit = True
                self._check_cancel(job)
                job.succeed(dest)
                logger.info("[%s] Cache hit %s; skipping compilation", job.name, key.short)
                return

        # ── Dependency phase ─────────────────────────────────────────
        self._check_cancel(job)
        if not self.coordinator.build_dependency(job, toolchain):
            return

        # ── COMPILING_MAIN ───────────────────────────────────────────
        self._check_cancel(job)
        job.transition(JobState.COMPILING_MAIN)
        toolchain = self._revalidate(job, toolchain)
        if toolchain is None:
            return

        failure = self.coordinator.invoke(
            job,
            Phase.MAIN,
            self.main_command(job),
            self.coordinator.main_env(job, toolchain),
            toolchain,
        )
        if failure is not None:
            job.fail(failure, "main build failed")
            return

        built = self.built_library(job)
        if not built.is_file():
            job.fail(FailureClass.UNKNOWN, f"main build produced no library at {built}")
            return

        dest = self._publish(job, built)
        self._check_cancel(job)
        job.succeed(dest)

        if self.cache_store is not None and dest.stat().st_size > 0:
            try:
                self.cache_store.put(key, dest)
            except OSError as e:
                logger.warning("[%s] Could not store artifact in cache: %s", job.name, e)

    def _revalidate(self, job: BuildJob, toolchain: ToolchainHandle) -> Optional[ToolchainHandle]:
        """Re-resolve if the toolchain installation vanished mid-build."""
        if toolchain.is_valid():
            return toolchain
        logger.warning("[%s] Toolchain at %s disappeared; re-resolving", job.name, toolchain.root)
        try:
            return self.resolver.resolve(job.target)
        except ResolutionError as e:
            job.fail(e.failure_class, str(e))
            return None

    def _publish(self, job: BuildJob, source: Path) -> Path:
        dest = self.artifact_dest(job.target)
        dest.parent.mkdir(parents=True, exist_ok=True)
        # recorded first so a cancellation mid-copy still gets discarded
        job.artifact_path = dest
        shutil.copy2(source, dest)
        return dest


# =============================================================================
# Whole pipeline
# =============================================================================

@dataclass
class PipelineResult:
    jobs: List[BuildJob]
    manifest: ArtifactManifest
    report: PipelineReport
    output_dir: Path

    @property
    def success(self) -> bool:
        return self.report.success


def run_pipeline(
    identifiers: Iterable[str],
    config: OrchestratorConfig,
    profile: Optional[Profile] = None,
    cache_store: Optional[CacheStore] = None,
    acquirer: Optional[ToolchainAcquirer] = None,
    cancel_event: Optional[threading.Event] = None,
    write: bool = True,
) -> PipelineResult:
    """
    Run the full matrix for *identifiers*.

    Raises InvalidTarget before any job starts if an identifier is unknown.
    Per-target failures never abort sibling targets.
    """
    if profile is None:
        profile = Profile.ring_fix()

    specs = expand_matrix(identifiers, api_level=config.api_level)

    if cancel_event is None:
        cancel_event = threading.Event()
    if cache_store is None and config.cache_dir is not None:
        cache_store = FileCacheStore(config.cache_dir)

    lock_contents = config.read_lock_contents()
    resolver = ToolchainResolver(config, acquirer)
    coordinator = DependencyBuildCoordinator(config, profile, cancel_event)

    logger.info(
        "Starting pipeline: %d target(s), profile=%s, parallel=%d",
        len(specs), profile.profile_id, config.max_parallel_jobs,
    )

    finished: Dict[str, BuildJob] = {}
    workers = min(config.max_parallel_jobs, len(specs))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="crossbuild") as ex:
        futures = {
            ex.submit(
                BuildJobRunner(
                    config, profile, resolver, coordinator,
                    lock_contents, cache_store, cancel_event,
                ).run,
                spec,
            ): spec
            for spec in specs
        }
        try:
            for fut in as_completed(futures):
                job = fut.result()
                finished[job.name] = job
        except KeyboardInterrupt:
            logger.warning("Interrupted; cancelling in-flight jobs")
            cancel_event.set()
            for fut, spec in futures.items():
                finished[spec.name] = fut.result()

    jobs = [finished[spec.name] for spec in specs]

    manifest = collect_artifacts(jobs, profile)
    report = build_report(jobs, manifest)
    log_report(report)

    output_dir = Path(config.output_dir)
    if write:
        write_outputs(report, manifest, output_dir)
        logger.info("Outputs written to %s", output_dir)

    return PipelineResult(jobs=jobs, manifest=manifest, report=report, output_dir=output_dir)


# ── CLI ──────────────────────────────────────────────────────────────────────

def main(argv: Optional[List[str]] = None):
    """CLI entry point for crossbuild."""
    parser = argparse.ArgumentParser(
        description="crossbuild — cross-target Android build orchestrator",
    )
    parser.add_argument(
        "targets",
        nargs="+",
        help=f"Targets to build ({', '.join(supported_targets())} or rust triples)",
    )
    parser.add_argument("-p", "--project-dir", type=Path, default=None,
                        help="Cargo project (default: $CROSSBUILD_PROJECT_DIR or cwd)")
    parser.add_argument("-o", "--output-dir", type=Path, default=None,
                        help="Directory for artifacts, logs and JSON outputs")
    parser.add_argument("--ndk-root", type=Path, default=None,
                        help="Android NDK root (default: $ANDROID_NDK_HOME)")
    parser.add_argument("--toolchain-root", type=Path, default=None,
                        help="Toolchain root used instead of NDK discovery")
    parser.add_argument("--scratch-dir", type=Path, default=None,
                        help="Dependency scratch directory, cleared between retries")
    parser.add_argument("--cache-dir", type=Path, default=None,
                        help="Artifact cache directory")
    parser.add_argument("--lockfile", type=Path, default=None,
                        help="Dependency lock file (default: <project>/Cargo.lock)")
    parser.add_argument("--api-level", type=int, default=None,
                        help="Minimum Android API level")
    parser.add_argument("--max-retries", type=int, default=None,
                        help="Retries for transient dependency failures")
    parser.add_argument("--pinned-toolchain", default=None,
                        help="Rust toolchain to pin the dependency build to")
    parser.add_argument("--pregenerated-dir", type=Path, default=None,
                        help="Precomputed intermediate artifacts for the dependency")
    parser.add_argument("-j", "--jobs", type=int, default=None,
                        help="Targets built in parallel")
    parser.add_argument("--timeout", type=float, default=None,
                        help="Per-step timeout in seconds")
    parser.add_argument("--artifact-name", default=None,
                        help="Library name (lib<name>.so)")
    parser.add_argument("--standard", action="store_true",
                        help="Skip dependency mitigations (retry policy still applies)")
    parser.add_argument("--strict-elf", action="store_true",
                        help="Fail targets whose artifact is not ELF for the target arch")
    parser.add_argument("--annotations", action="store_true",
                        help="Print CI annotation lines")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Enable verbose logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    config = OrchestratorConfig.from_env().with_overrides(
        project_dir=args.project_dir,
        output_dir=args.output_dir,
        ndk_root=args.ndk_root,
        toolchain_root_override=args.toolchain_root,
        dependency_scratch_dir=args.scratch_dir,
        cache_dir=args.cache_dir,
        lockfile=args.lockfile,
        api_level=args.api_level,
        max_dependency_retries=args.max_retries,
        pinned_toolchain=args.pinned_toolchain,
        pregenerated_dir=args.pregenerated_dir,
        max_parallel_jobs=args.jobs,
        step_timeout=args.timeout,
        artifact_name=args.artifact_name,
    )
    profile = Profile.standard() if args.standard else Profile.ring_fix()
    if args.strict_elf:
        profile = replace(profile, strict_elf=True)

    try:
        result = run_pipeline(args.targets, config, profile=profile)
    except InvalidTarget as e:
        logger.error("%s", e)
        if args.annotations:
            print(f"::error title=crossbuild INVALID_TARGET::{e}")
        sys.exit(2)

    if args.annotations:
        for line in render_annotations(result.report):
            print(line)

    counts = result.report.counts
    print(f"Pipeline: {result.report.status} "
          f"({counts.succeeded}/{counts.total} succeeded, "
          f"failed={counts.failed}, cancelled={counts.cancelled})")
    for arch, path in result.manifest.published.items():
        print(f"  {arch}: {path}")
    print(f"Outputs written to: {result.output_dir}")

    sys.exit(0 if result.success else 1)


if __name__ == "__main__":
    main()
