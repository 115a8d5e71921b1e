"""Tests for all Pydantic data models: validation, immutability, defaults."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from pydantic import ValidationError

from harborline.models import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    ArtifactReference,
    BuildContext,
    DeployedInstance,
    JobDefinition,
    JobReport,
    JobState,
    PipelineDefinition,
    PipelineOutcome,
    PipelineReport,
    PortMapping,
    ProbeAttempt,
    PublishedRef,
    TriggerCondition,
)


class TestJobModels:
    def test_job_state_values(self):
        assert JobState.PENDING == "pending"
        assert JobState.SKIPPED == "skipped"

    def test_terminal_states_have_no_exits(self):
        for state in TERMINAL_STATES:
            assert VALID_TRANSITIONS[state] == set()

    def test_pending_can_run_or_skip(self):
        assert VALID_TRANSITIONS[JobState.PENDING] == {JobState.RUNNING, JobState.SKIPPED}

    def test_running_cannot_be_skipped(self):
        assert JobState.SKIPPED not in VALID_TRANSITIONS[JobState.RUNNING]

    def test_job_definition_aliases(self):
        job = JobDefinition.model_validate({"id": "build", "uses": "build", "with": {"image": "x"}})
        assert job.job_id == "build"
        assert job.with_ == {"image": "x"}
        assert job.title == "build"

    def test_display_name_title(self):
        assert JobDefinition(id="b", uses="build", display_name="Build site").title == "Build site"

    def test_job_definition_is_frozen(self):
        job = JobDefinition(id="a", uses="build")
        with pytest.raises(ValidationError):
            job.uses = "deploy"  # type: ignore[misc]

    def test_empty_id_rejected(self):
        with pytest.raises(ValidationError):
            JobDefinition(id="", uses="build")


class TestArtifactModels:
    def test_alias_and_pinned(self):
        ref = ArtifactReference(name="site", tag="v1", digest="sha256:ab")
        assert ref.alias == "site:v1"
        assert ref.pinned == "site@sha256:ab"

    def test_digest_needs_algorithm(self):
        with pytest.raises(ValidationError):
            ArtifactReference(name="site", digest="abcdef")

    def test_published_ref(self):
        published = PublishedRef(registry="r:5000", repository="site", tag="v1", digest="sha256:ab")
        assert published.image == "r:5000/site@sha256:ab"
        assert published.as_artifact().pinned == "r:5000/site@sha256:ab"

    def test_recipe_path(self, tmp_path):
        assert BuildContext(root=tmp_path).recipe_path == tmp_path / "Dockerfile"
        absolute = BuildContext(root=tmp_path, recipe=Path("/elsewhere/Containerfile"))
        assert absolute.recipe_path == Path("/elsewhere/Containerfile")


class TestDeploymentModels:
    def test_port_flag(self):
        assert PortMapping.parse("8080:80").as_flag() == "8080:80/tcp"

    def test_port_range_enforced(self):
        with pytest.raises(ValidationError):
            PortMapping(host_port=0, container_port=80)

    def test_endpoint_for_unpublished_port(self):
        instance = DeployedInstance(
            target_host="localhost",
            artifact=ArtifactReference(name="site", digest="sha256:ab"),
            ports=[PortMapping.parse("8080:80")],
            name="web",
            instance_id="c0ffee",
        )
        assert instance.endpoint() == "http://localhost:8080"
        with pytest.raises(KeyError):
            instance.endpoint(443)


class TestPipelineModels:
    def test_empty_trigger_matches_everything(self):
        assert TriggerCondition().matches("push", "feature/x")
        assert TriggerCondition().matches("tag", None)

    def test_branch_globs(self):
        trigger = TriggerCondition(events=["push"], branches=["main", "release/*"])
        assert trigger.matches("push", "release/1.2")
        assert not trigger.matches("push", "feature/x")
        assert not trigger.matches("pull_request", "main")
        assert not trigger.matches("push", None)

    def test_manual_run_always_triggers(self):
        definition = PipelineDefinition(
            name="p",
            trigger=TriggerCondition(events=["push"]),
            jobs=[JobDefinition(id="a", uses="build")],
        )
        assert definition.should_trigger() is True
        assert definition.should_trigger("tag") is False

    def test_job_lookup(self):
        definition = PipelineDefinition(name="p", jobs=[JobDefinition(id="a", uses="build")])
        assert definition.job("a").uses == "build"
        assert definition.job_ids == ["a"]
        with pytest.raises(KeyError):
            definition.job("zzz")


class TestReportModels:
    def test_probe_attempt_health(self):
        assert ProbeAttempt(number=1, started_at=0, elapsed=0.1, status_code=204).healthy
        assert not ProbeAttempt(number=1, started_at=0, elapsed=0.1, status_code=302).healthy
        assert not ProbeAttempt(number=1, started_at=0, elapsed=0.1, error="refused").healthy

    def test_job_duration(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        report = JobReport(job_id="a", state=JobState.SUCCEEDED, started_at=start,
                           finished_at=start + timedelta(seconds=3))
        assert report.duration_seconds == 3.0
        assert JobReport(job_id="b", state=JobState.SKIPPED).duration_seconds is None

    def test_pipeline_report_lookup(self):
        report = PipelineReport(
            run_id="r",
            pipeline="p",
            outcome=PipelineOutcome.FAILED,
            jobs=[JobReport(job_id="a", state=JobState.FAILED), JobReport(job_id="b", state=JobState.SKIPPED)],
        )
        assert report.states == {"a": JobState.FAILED, "b": JobState.SKIPPED}
        assert [j.job_id for j in report.failed_jobs] == ["a"]
        with pytest.raises(KeyError):
            report.job("c")
