"""
Artifact collection — validate and label per-target outputs once every job
is terminal, then publish the ArtifactManifest.

A job that reports success without a non-empty artifact on disk is demoted
to FAILED(UNKNOWN).  Cancelled jobs never publish: whatever they left in
the artifacts directory is deleted.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from elftools.common.exceptions import ELFError
from elftools.elf.elffile import ELFFile

from crossbuild.core.cache import hash_file
from crossbuild.core.job import BuildJob
from crossbuild.core.targets import expected_elf_machine
from crossbuild.enums import ArtifactFlag, FailureClass, JobState
from crossbuild.io.schema import ArtifactManifest, ElfMeta, ManifestEntry, TargetInfo
from crossbuild.policy.profile import Profile

logger = logging.getLogger(__name__)


def target_info(job: BuildJob) -> TargetInfo:
    t = job.target
    return TargetInfo(arch=t.arch.value, triple=t.triple, abi=t.abi, api_level=t.api_level)


def read_elf_meta(path: Path) -> Optional[ElfMeta]:
    """ELF header facts, or None if *path* is not an ELF file."""
    try:
        with open(path, "rb") as f:
            elf = ELFFile(f)
            return ElfMeta(
                elf_type=elf.header["e_type"],
                machine=elf.header["e_machine"],
                elf_class=elf.elfclass,
            )
    except (ELFError, OSError) as e:
        logger.debug("Not an ELF file: %s (%s)", path, e)
        return None


def check_artifact(job: BuildJob, profile: Profile) -> Tuple[List[ArtifactFlag], Optional[ElfMeta]]:
    """
    Validate the artifact of a SUCCEEDED job.

    Returns (flags, elf_meta).  NO_ARTIFACT and EMPTY_ARTIFACT are always
    fatal for the job; ELF flags are fatal only under ``profile.strict_elf``.
    """
    path = job.artifact_path
    if path is None or not Path(path).is_file():
        return [ArtifactFlag.NO_ARTIFACT], None
    if Path(path).stat().st_size == 0:
        return [ArtifactFlag.EMPTY_ARTIFACT], None

    flags: List[ArtifactFlag] = []
    meta = read_elf_meta(Path(path))
    if meta is None:
        flags.append(ArtifactFlag.NON_ELF_OUTPUT)
    elif meta.machine != expected_elf_machine(job.target.arch):
        flags.append(ArtifactFlag.ARCH_MISMATCH)
    return flags, meta


def _discard(job: BuildJob) -> None:
    if job.artifact_path is not None and Path(job.artifact_path).exists():
        Path(job.artifact_path).unlink()
        logger.info("[%s] Discarded partial artifact %s", job.name, job.artifact_path)
    job.artifact_path = None


def collect_artifacts(jobs: Iterable[BuildJob], profile: Profile) -> ArtifactManifest:
    """
    Validate every job's artifact and build the manifest.

    Must be called after all jobs are terminal.  Mutates jobs whose
    post-condition fails (SUCCEEDED -> FAILED(UNKNOWN)).
    """
    entries = {}
    for job in jobs:
        if not job.is_terminal:
            raise ValueError(f"Job {job.name} is not terminal ({job.state.value})")

        flags: List[ArtifactFlag] = []
        meta: Optional[ElfMeta] = None
        sha256 = None
        size = None

        if job.state == JobState.SUCCEEDED:
            flags, meta = check_artifact(job, profile)
            fatal = {ArtifactFlag.NO_ARTIFACT, ArtifactFlag.EMPTY_ARTIFACT}
            if profile.strict_elf:
                fatal |= {ArtifactFlag.NON_ELF_OUTPUT, ArtifactFlag.ARCH_MISMATCH}

            demote = [f for f in flags if f in fatal]
            if demote:
                detail = "artifact " + ", ".join(f.value.lower() for f in demote)
                logger.warning("[%s] Reported success but %s; demoting", job.name, detail)
                job.fail(FailureClass.UNKNOWN, detail)
            else:
                for f in flags:
                    logger.warning("[%s] Artifact flagged %s", job.name, f.value)
                sha256 = hash_file(Path(job.artifact_path))
                size = Path(job.artifact_path).stat().st_size

        elif job.state == JobState.CANCELLED:
            if job.artifact_path is not None:
                flags.append(ArtifactFlag.DISCARDED)
            _discard(job)

        entries[job.target.arch.value] = ManifestEntry(
            target=target_info(job),
            status=job.state.value,
            artifact_path=str(job.artifact_path) if job.state == JobState.SUCCEEDED else None,
            sha256=sha256,
            size_bytes=size,
            cache_hit=job.cache_hit,
            elf=meta,
            flags=[f.value for f in flags],
        )

    manifest = ArtifactManifest(profile_id=profile.profile_id, entries=entries)
    logger.info(
        "Artifact manifest: %d/%d target(s) published",
        len(manifest.published), len(entries),
    )
    return manifest
