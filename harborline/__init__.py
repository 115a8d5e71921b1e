"""Harborline: container build-and-deploy orchestrator.

Runs Build -> Publish -> Deploy -> Verify pipelines described as a DAG of
jobs:
  - Digest-identified artifacts; tags are mutable aliases only
  - Idempotent, retried registry pushes with tag promotion
  - Local, remote and ephemeral deployment targets with rollback
  - Bounded HTTP verification with Healthy / Unhealthy / Timeout verdicts
  - Concurrent scheduling with cascade skipping and cancellation
  - Hash-chained SQLite run ledger
"""

__version__ = "0.1.0"
__description__ = "Container build-and-deploy pipeline orchestrator"

from harborline.core.orchestrator import PipelineOrchestrator
from harborline.definition import load_definition
from harborline.cli.app import app as cli

__all__ = ["PipelineOrchestrator", "load_definition", "cli", "__version__"]
