"""
Crossbuild Worker

Consumes pipeline jobs from the Redis queue and runs the orchestrator for
each.  Outputs (artifacts, logs, pipeline_report.json,
artifact_manifest.json) land under ``<artifacts_path>/<job_id>/``; the API
reads the report back from there.
"""
import json
import logging
import os
import shutil
import threading
import time
from pathlib import Path
from typing import Optional

import redis

from crossbuild.config import OrchestratorConfig
from crossbuild.errors import InvalidTarget
from crossbuild.io.schema import PipelineReport
from crossbuild.io.writer import REPORT_FILENAME
from crossbuild.policy.profile import Profile
from crossbuild.runner import run_pipeline

logger = logging.getLogger("crossbuild_worker")

QUEUE_NAME = "crossbuild:queue"
JOB_TYPE = "crossbuild_pipeline"


class PipelineWorker:
    """
    Worker that pulls pipeline jobs from Redis and executes them.
    One pipeline at a time; targets inside a pipeline run in parallel.
    """

    def __init__(
        self,
        redis_host: str = "redis",
        redis_port: int = 6379,
        workspace_root: str = "/tmp/crossbuild",
        artifacts_path: str = "/files/artifacts",
        base_config: Optional[OrchestratorConfig] = None,
    ):
        self.redis_host = redis_host
        self.redis_port = redis_port
        self.workspace_root = Path(workspace_root)
        self.artifacts_path = Path(artifacts_path)
        self.base_config = base_config or OrchestratorConfig.from_env()

        self.redis_client: Optional[redis.Redis] = None
        self.cancel_event = threading.Event()

    def connect(self):
        """Establish the Redis connection."""
        logger.info("Connecting to Redis...")
        self.redis_client = redis.Redis(
            host=self.redis_host,
            port=self.redis_port,
            decode_responses=True,
        )
        self.redis_client.ping()
        logger.info("Redis connected")

    def run(self):
        """Main worker loop — blocking pop from Redis queue."""
        self.connect()
        logger.info("Crossbuild worker started, waiting for jobs...")

        while True:
            try:
                if self.redis_client is None:
                    raise RuntimeError("Redis client not connected")

                result = self.redis_client.blpop([QUEUE_NAME], timeout=5)
                if result is None:
                    continue

                _, job_data = result  # type: ignore
                job = json.loads(job_data)

                job_type = job.get("job_type", "")
                if job_type != JOB_TYPE:
                    logger.warning(f"Unknown job type '{job_type}', skipping")
                    continue

                logger.info(f"Received pipeline job: {job['job_id']}")
                self.process_pipeline_job(job)

            except KeyboardInterrupt:
                logger.info("Worker shutting down...")
                self.cancel_event.set()
                break
            except Exception as e:
                logger.error(f"Error in worker loop: {e}", exc_info=True)
                time.sleep(5)

    # -----------------------------------------------------------------
    # Pipeline processing
    # -----------------------------------------------------------------

    def config_for(self, job_data: dict) -> OrchestratorConfig:
        """Per-job config: worker defaults plus request overrides."""
        job_id = job_data["job_id"]
        project_dir = job_data.get("project_dir")
        lockfile = job_data.get("lockfile")
        return self.base_config.with_overrides(
            project_dir=Path(project_dir) if project_dir else None,
            lockfile=Path(lockfile) if lockfile else None,
            output_dir=self.artifacts_path / job_id,
            dependency_scratch_dir=self.workspace_root / job_id / "scratch",
            api_level=job_data.get("api_level"),
            pinned_toolchain=job_data.get("pinned_toolchain"),
            step_timeout=job_data.get("step_timeout"),
        )

    def process_pipeline_job(self, job_data: dict) -> Optional[PipelineReport]:
        """
        Run one pipeline job.

        InvalidTarget is recorded as a failed report file so the API can
        surface it; nothing is built in that case.
        """
        job_id = job_data["job_id"]
        config = self.config_for(job_data)
        profile = Profile.standard() if job_data.get("profile") == "standard" else Profile.ring_fix()

        try:
            result = run_pipeline(
                job_data["targets"],
                config,
                profile=profile,
                cancel_event=self.cancel_event,
            )
        except InvalidTarget as e:
            logger.error(f"Pipeline {job_id} rejected: {e}")
            output_dir = Path(config.output_dir)
            output_dir.mkdir(parents=True, exist_ok=True)
            report = PipelineReport(
                profile_id=profile.profile_id,
                status="FAILED",
                success=False,
                requested=list(job_data["targets"]),
                error=str(e),
            )
            (output_dir / REPORT_FILENAME).write_text(report.model_dump_json(indent=2))
            return report
        finally:
            scratch = self.workspace_root / job_id
            if scratch.exists():
                shutil.rmtree(scratch, ignore_errors=True)
                logger.info(f"Cleaned up workspace: {scratch}")

        logger.info(
            f"Pipeline complete: {job_id} — "
            f"status={result.report.status}, "
            f"targets={result.report.counts.total}"
        )
        return result.report


# =============================================================================
# Entry point
# =============================================================================

if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    worker = PipelineWorker(
        redis_host=os.getenv("REDIS_HOST", "redis"),
        redis_port=int(os.getenv("REDIS_PORT", "6379")),
        workspace_root=os.getenv("CROSSBUILD_WORKSPACE", "/tmp/crossbuild"),
        artifacts_path=os.getenv("ARTIFACTS_PATH", "/files/artifacts"),
    )
    worker.run()
