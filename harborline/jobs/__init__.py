"""Job implementations for the Build -> Publish -> Deploy -> Verify pipeline."""

from harborline.jobs.base import BaseJob, JobContext, JobExecutionError, Toolbox
from harborline.jobs.build import BuildJob
from harborline.jobs.deploy import DeployJob
from harborline.jobs.publish import PublishJob
from harborline.jobs.verify import VerifyJob

JOB_REGISTRY: dict[str, type[BaseJob]] = {
    job.uses: job for job in (BuildJob, PublishJob, DeployJob, VerifyJob)
}


def get_job(uses: str) -> BaseJob:
    """Instantiate the job registered under *uses*."""
    try:
        return JOB_REGISTRY[uses]()
    except KeyError:
        raise KeyError(f"Unknown job type {uses!r}; known: {sorted(JOB_REGISTRY)}") from None


__all__ = [
    "BaseJob",
    "BuildJob",
    "DeployJob",
    "JOB_REGISTRY",
    "JobContext",
    "JobExecutionError",
    "PublishJob",
    "Toolbox",
    "VerifyJob",
    "get_job",
]
