"""Harborline data models: all Pydantic v2, records frozen (immutable)."""

from harborline.models.artifacts import (
    ArtifactReference,
    BuildContext,
    Credential,
    LocalArtifact,
    PublishedRef,
    Session,
)
from harborline.models.deployment import DeployedInstance, PortMapping, RunningContainer
from harborline.models.jobs import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    JobDefinition,
    JobState,
    JobTransition,
)
from harborline.models.ledger import LedgerEntry
from harborline.models.pipeline import PipelineDefinition, TriggerCondition
from harborline.models.reports import (
    JobReport,
    PipelineOutcome,
    PipelineReport,
    ProbeAttempt,
    ProbeResult,
    ProbeVerdict,
)

__all__ = [
    # artifacts
    "ArtifactReference",
    "BuildContext",
    "Credential",
    "LocalArtifact",
    "PublishedRef",
    "Session",
    # deployment
    "DeployedInstance",
    "PortMapping",
    "RunningContainer",
    # jobs
    "JobDefinition",
    "JobState",
    "JobTransition",
    "TERMINAL_STATES",
    "VALID_TRANSITIONS",
    # ledger
    "LedgerEntry",
    # pipeline
    "PipelineDefinition",
    "TriggerCondition",
    # reports
    "JobReport",
    "PipelineOutcome",
    "PipelineReport",
    "ProbeAttempt",
    "ProbeResult",
    "ProbeVerdict",
]
