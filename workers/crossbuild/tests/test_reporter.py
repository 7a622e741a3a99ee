"""
Tests for crossbuild.reporter and crossbuild.io.writer.
"""
import json
from pathlib import Path

from crossbuild.core.artifacts import collect_artifacts
from crossbuild.core.job import BuildJob
from crossbuild.core.targets import Arch, make_target
from crossbuild.enums import FailureClass, JobState
from crossbuild.io.writer import MANIFEST_FILENAME, REPORT_FILENAME, load_manifest, load_report, write_outputs
from crossbuild.policy.profile import Profile
from crossbuild.policy.remediation import hint_for
from crossbuild.reporter import build_report, render_annotations


def _ok(arch: Arch, tmp_path: Path) -> BuildJob:
    path = tmp_path / f"lib-{arch.value}.so"
    path.write_text("library")
    job = BuildJob(target=make_target(arch))
    job.transition(JobState.RESOLVING_TOOLCHAIN)
    job.succeed(path)
    return job


def _failed(arch: Arch, failure_class: FailureClass) -> BuildJob:
    job = BuildJob(target=make_target(arch))
    job.transition(JobState.RESOLVING_TOOLCHAIN)
    job.fail(failure_class, "boom")
    return job


def _report(jobs):
    manifest = collect_artifacts(jobs, Profile.ring_fix())
    return build_report(jobs, manifest), manifest


class TestBuildReport:

    def test_all_succeeded(self, tmp_path):
        report, _ = _report([_ok(Arch.AARCH64, tmp_path), _ok(Arch.X86_64, tmp_path)])
        assert report.status == "SUCCESS"
        assert report.success is True
        assert report.counts.total == 2
        assert report.counts.succeeded == 2
        assert report.failed_targets() == []

    def test_partial_is_not_success(self, tmp_path):
        report, _ = _report([
            _ok(Arch.AARCH64, tmp_path),
            _failed(Arch.X86_64, FailureClass.MISSING_TOOLCHAIN),
        ])
        assert report.status == "PARTIAL"
        assert report.success is False
        failed = report.failed_targets()
        assert [t.target.arch for t in failed] == ["x86_64"]
        assert failed[0].failure_class == "MISSING_TOOLCHAIN"
        assert failed[0].remediation_hint == hint_for(FailureClass.MISSING_TOOLCHAIN)

    def test_nothing_succeeded(self):
        report, _ = _report([_failed(Arch.I686, FailureClass.LINKER_NOT_FOUND)])
        assert report.status == "FAILED"
        assert report.counts.failed == 1

    def test_cancelled_counted_separately(self):
        job = BuildJob(target=make_target(Arch.ARMV7))
        job.cancel()
        report, _ = _report([job])
        assert report.counts.cancelled == 1
        assert report.counts.failed == 0
        assert report.targets[0].failure_class is None
        assert report.targets[0].state == "CANCELLED"
        assert report.status == "FAILED"

    def test_requested_order_preserved(self, tmp_path):
        report, _ = _report([
            _failed(Arch.X86_64, FailureClass.UNKNOWN),
            _ok(Arch.AARCH64, tmp_path),
        ])
        assert report.requested == ["x86_64", "aarch64"]
        assert [t.target.arch for t in report.targets] == ["x86_64", "aarch64"]


class TestAnnotations:

    def test_one_error_per_failed_target_plus_notice(self, tmp_path):
        report, _ = _report([
            _ok(Arch.AARCH64, tmp_path),
            _failed(Arch.I686, FailureClass.CONCURRENT_FILE_COLLISION),
        ])
        lines = render_annotations(report)
        assert len(lines) == 2
        assert lines[0].startswith("::error title=i686 CONCURRENT_FILE_COLLISION::")
        assert lines[1] == "::notice title=crossbuild PARTIAL::1/2 target(s) succeeded"


class TestWriter:

    def test_outputs_written_and_loadable(self, tmp_path):
        report, manifest = _report([
            _ok(Arch.AARCH64, tmp_path),
            _failed(Arch.ARMV7, FailureClass.DEPENDENCY_COMPILE_ERROR),
        ])
        out = write_outputs(report, manifest, tmp_path / "out")

        raw = json.loads((out / REPORT_FILENAME).read_text())
        assert raw["status"] == "PARTIAL"
        assert raw["orchestrator_version"] == "v1"
        assert (out / MANIFEST_FILENAME).exists()

        assert load_report(out).model_dump() == report.model_dump()
        assert load_manifest(out).published == manifest.published
