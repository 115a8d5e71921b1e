"""Pipeline definition models: the DAG description consumed at startup."""

from __future__ import annotations

from fnmatch import fnmatchcase

from pydantic import BaseModel, ConfigDict

from harborline.models.jobs import JobDefinition


class TriggerCondition(BaseModel):
    """When a pipeline should run, e.g. "on push to main".

    Empty lists match everything.  Branch entries are glob patterns.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    events: list[str] = []
    branches: list[str] = []

    def matches(self, event: str | None, branch: str | None) -> bool:
        if self.events and event not in self.events:
            return False
        if self.branches:
            if branch is None:
                return False
            return any(fnmatchcase(branch, pattern) for pattern in self.branches)
        return True


class PipelineDefinition(BaseModel):
    """A validated pipeline: name, trigger and job DAG."""

    model_config = ConfigDict(frozen=True)

    name: str
    trigger: TriggerCondition = TriggerCondition()
    jobs: list[JobDefinition]

    def should_trigger(self, event: str | None = None, branch: str | None = None) -> bool:
        """Evaluate the trigger.  ``event=None`` means a manual run."""
        if event is None:
            return True
        return self.trigger.matches(event, branch)

    def job(self, job_id: str) -> JobDefinition:
        for definition in self.jobs:
            if definition.job_id == job_id:
                return definition
        raise KeyError(job_id)

    @property
    def job_ids(self) -> list[str]:
        return [definition.job_id for definition in self.jobs]
