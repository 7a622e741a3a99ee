"""
Failure reporter — aggregate terminal job states into one pipeline result.

The pipeline succeeds only when every requested target SUCCEEDED.  Partial
success is reported as PARTIAL but still counts as failure: a release has
to cover its declared target set.
"""
from __future__ import annotations

import logging
from typing import Iterable, List

from crossbuild.core.artifacts import target_info
from crossbuild.core.job import BuildJob
from crossbuild.enums import JobState, PipelineStatus
from crossbuild.io.schema import (
    ArtifactManifest,
    AttemptModel,
    PipelineReport,
    StatusCounts,
    TargetResult,
)
from crossbuild.policy.remediation import hint_for

logger = logging.getLogger(__name__)


def _target_result(job: BuildJob) -> TargetResult:
    succeeded = job.state == JobState.SUCCEEDED
    return TargetResult(
        target=target_info(job),
        state=job.state.value,
        succeeded=succeeded,
        failure_class=job.failure_class.value if job.failure_class else None,
        failure_detail=job.failure_detail,
        remediation_hint=hint_for(job.failure_class) if job.failure_class else None,
        retry_count=job.retry_count,
        cache_key=job.cache_key,
        cache_hit=job.cache_hit,
        toolchain_version=job.toolchain_version,
        artifact_path=str(job.artifact_path) if succeeded and job.artifact_path else None,
        mitigations_applied=[m.value for m in job.mitigations_applied],
        attempts=[
            AttemptModel(
                phase=a.phase.value,
                attempt=a.attempt,
                exit_code=a.exit_code,
                duration_ms=a.duration_ms,
                failure_class=a.failure_class.value if a.failure_class else None,
                mitigations=[m.value for m in a.mitigations],
                stdout_path=str(a.stdout_path) if a.stdout_path else None,
                stderr_path=str(a.stderr_path) if a.stderr_path else None,
            )
            for a in job.attempts
        ],
    )


def build_report(jobs: Iterable[BuildJob], manifest: ArtifactManifest) -> PipelineReport:
    """Derive the pipeline report from terminal jobs."""
    jobs = list(jobs)
    results = [_target_result(j) for j in jobs]

    counts = StatusCounts(total=len(results))
    for job in jobs:
        if job.state == JobState.SUCCEEDED:
            counts.succeeded += 1
        elif job.state == JobState.CANCELLED:
            counts.cancelled += 1
        else:
            counts.failed += 1

    if counts.total > 0 and counts.succeeded == counts.total:
        status = PipelineStatus.SUCCESS
    elif counts.succeeded > 0:
        status = PipelineStatus.PARTIAL
    else:
        status = PipelineStatus.FAILED

    return PipelineReport(
        profile_id=manifest.profile_id,
        status=status.value,
        success=status == PipelineStatus.SUCCESS,
        requested=[j.name for j in jobs],
        counts=counts,
        targets=results,
    )


def render_annotations(report: PipelineReport) -> List[str]:
    """CI annotation lines: one error per failed target, one notice overall."""
    lines: List[str] = []
    for t in report.failed_targets():
        cls = t.failure_class or t.state
        hint = t.remediation_hint or ""
        lines.append(f"::error title={t.target.arch} {cls}::{hint}")
    lines.append(
        f"::notice title=crossbuild {report.status}::"
        f"{report.counts.succeeded}/{report.counts.total} target(s) succeeded"
    )
    return lines


def log_report(report: PipelineReport) -> None:
    """Log the per-target breakdown."""
    for t in report.targets:
        if t.succeeded:
            logger.info(
                "%-8s SUCCEEDED%s retries=%d",
                t.target.arch, " (cache hit)" if t.cache_hit else "", t.retry_count,
            )
        else:
            logger.error(
                "%-8s %s %s retries=%d: %s",
                t.target.arch, t.state, t.failure_class or "", t.retry_count,
                t.remediation_hint or "",
            )
    logger.info(
        "Pipeline %s: %d/%d target(s) succeeded",
        report.status, report.counts.succeeded, report.counts.total,
    )
