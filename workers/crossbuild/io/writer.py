"""
Writer — serialize orchestrator outputs to JSON files.

Filesystem layout per pipeline run:
    <output_dir>/pipeline_report.json
    <output_dir>/artifact_manifest.json
    <output_dir>/artifacts/<abi>/lib<name>.so
    <output_dir>/logs/<arch>/<phase>.attempt<N>.{stdout,stderr}
"""
import json
from pathlib import Path

from crossbuild.io.schema import ArtifactManifest, PipelineReport

REPORT_FILENAME = "pipeline_report.json"
MANIFEST_FILENAME = "artifact_manifest.json"


def _dump(model, path: Path) -> None:
    path.write_text(
        json.dumps(
            model.model_dump(mode="json"),
            indent=2,
            sort_keys=True,
        )
        + "\n"
    )


def write_outputs(
    report: PipelineReport,
    manifest: ArtifactManifest,
    output_dir: Path,
) -> Path:
    """
    Write pipeline_report.json and artifact_manifest.json into *output_dir*.

    Creates *output_dir* if it does not exist.
    Returns the output directory path.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    _dump(report, output_dir / REPORT_FILENAME)
    _dump(manifest, output_dir / MANIFEST_FILENAME)
    return output_dir


def load_report(output_dir: Path) -> PipelineReport:
    return PipelineReport.model_validate_json((output_dir / REPORT_FILENAME).read_text())


def load_manifest(output_dir: Path) -> ArtifactManifest:
    return ArtifactManifest.model_validate_json((output_dir / MANIFEST_FILENAME).read_text())
