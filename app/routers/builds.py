"""
Builds Router — crossbuild pipeline submission and status tracking.

Targets are validated against the closed Android matrix before anything is
queued; the worker writes pipeline_report.json / artifact_manifest.json under
ARTIFACTS_PATH/<job_id>/ and these endpoints read them back.
"""
import uuid
import json
from pathlib import Path
from typing import List, Optional

import redis
from fastapi import APIRouter, HTTPException, status, Depends
from pydantic import BaseModel, Field, ValidationError, field_validator

from app.config import Settings
from crossbuild.core.targets import expand_matrix, make_target, supported_targets, Arch
from crossbuild.errors import InvalidTarget
from crossbuild.io.writer import load_manifest, load_report

QUEUE_NAME = "crossbuild:queue"
JOB_TYPE = "crossbuild_pipeline"
VALID_PROFILES = {"ring_fix", "standard"}


# =============================================================================
# Dependencies
# =============================================================================

def get_settings() -> Settings:
    return Settings()


def get_redis() -> redis.Redis:
    """Get Redis client."""
    return redis.Redis.from_url(Settings().redis_url, decode_responses=True)


# =============================================================================
# Request / Response Models
# =============================================================================

class PipelineRequest(BaseModel):
    """
    Request to build the native library for a set of Android targets.

    Targets accept short names (aarch64, armv7, i686, x86_64) or Rust
    triples; duplicates collapse onto one job per architecture.
    """
    targets: List[str] = Field(
        default_factory=supported_targets,
        description="Target identifiers to build (defaults to the full matrix)",
    )
    project_dir: Optional[str] = Field(None, description="Cargo project directory (src-tauri)")
    lockfile: Optional[str] = Field(None, description="Lockfile path, defaults to <project_dir>/Cargo.lock")
    api_level: Optional[int] = Field(None, ge=1, description="Android API level for the NDK clang wrappers")
    pinned_toolchain: Optional[str] = Field(None, description="rustup toolchain used when pinning")
    step_timeout: Optional[int] = Field(None, ge=1, description="Seconds allowed per cargo invocation")
    profile: str = Field("ring_fix", description="Build profile: ring_fix or standard")

    @field_validator("profile")
    @classmethod
    def validate_profile(cls, v: str) -> str:
        if v not in VALID_PROFILES:
            raise ValueError(f"profile must be one of {sorted(VALID_PROFILES)}")
        return v


class PipelineResponse(BaseModel):
    """Response after submitting a pipeline."""
    job_id: str
    targets: List[str]
    status: str
    message: str


# =============================================================================
# Router
# =============================================================================

router = APIRouter()


def _job_dir(settings: Settings, job_id: str) -> Path:
    try:
        uuid.UUID(job_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job {job_id} not found",
        )
    return Path(settings.ARTIFACTS_PATH) / job_id


@router.post(
    "/pipeline",
    response_model=PipelineResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def submit_pipeline(
    request: PipelineRequest,
    redis_client: redis.Redis = Depends(get_redis),
    settings: Settings = Depends(get_settings),
):
    """
    Submit a cross-target build pipeline.

    Rejects the whole request with 400 if any target is outside the
    supported matrix; nothing is queued in that case.
    """
    api_level = request.api_level or settings.DEFAULT_API_LEVEL
    try:
        specs = expand_matrix(request.targets, api_level)
    except InvalidTarget as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": str(e), "supported": e.supported},
        )

    job_id = str(uuid.uuid4())
    targets = [s.name for s in specs]

    job_data = {
        "job_id": job_id,
        "job_type": JOB_TYPE,
        "targets": targets,
        "project_dir": request.project_dir or settings.DEFAULT_PROJECT_DIR,
        "lockfile": request.lockfile,
        "api_level": api_level,
        "pinned_toolchain": request.pinned_toolchain,
        "step_timeout": request.step_timeout or settings.DEFAULT_STEP_TIMEOUT,
        "profile": request.profile,
    }

    redis_client.rpush(QUEUE_NAME, json.dumps(job_data))

    return PipelineResponse(
        job_id=job_id,
        targets=targets,
        status="QUEUED",
        message=f"Pipeline queued for {len(targets)} target(s): {', '.join(targets)}",
    )


@router.get("/job/{job_id}")
async def get_job_status(
    job_id: str,
    redis_client: redis.Redis = Depends(get_redis),
    settings: Settings = Depends(get_settings),
):
    """
    Get status of a pipeline by job_id.

    Checks the Redis queue first (QUEUED), then the report the worker wrote.
    """
    queue_data = redis_client.lrange(QUEUE_NAME, 0, -1)
    for item in queue_data:  # type: ignore
        job = json.loads(item)
        if job.get("job_id") == job_id:
            return {
                "job_id": job_id,
                "status": "QUEUED",
                "targets": job.get("targets", []),
                "message": "Job is waiting in queue",
            }

    job_dir = _job_dir(settings, job_id)
    try:
        report = load_report(job_dir)
    except FileNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job {job_id} not found",
        )
    except ValidationError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Report for job {job_id} is unreadable",
        )

    return {"job_id": job_id, **report.model_dump(mode="json")}


@router.get("/job/{job_id}/manifest")
async def get_job_manifest(
    job_id: str,
    settings: Settings = Depends(get_settings),
):
    """Artifact manifest for a finished pipeline."""
    job_dir = _job_dir(settings, job_id)
    try:
        manifest = load_manifest(job_dir)
    except FileNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No manifest for job {job_id}",
        )

    return {"job_id": job_id, **manifest.model_dump(mode="json")}


@router.get("/targets")
async def list_targets(settings: Settings = Depends(get_settings)):
    """Supported target matrix with triples, ABIs and linker wrappers."""
    targets = []
    for arch in Arch:
        spec = make_target(arch, settings.DEFAULT_API_LEVEL)
        targets.append({
            "arch": spec.name,
            "triple": spec.triple,
            "abi": spec.abi,
            "linker": spec.linker_name(),
        })
    return {"api_level": settings.DEFAULT_API_LEVEL, "targets": targets}
