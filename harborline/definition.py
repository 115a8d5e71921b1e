"""Pipeline definition loader (TOML or JSON).

A malformed definition fails fast with ``DefinitionError`` listing every
problem found, before any job runs.
"""

from __future__ import annotations

import json
import logging
import tomllib
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from harborline.core.job_graph import JobGraph
from harborline.errors import DefinitionError
from harborline.jobs import JOB_REGISTRY
from harborline.models.jobs import JobDefinition
from harborline.models.pipeline import PipelineDefinition, TriggerCondition

logger = logging.getLogger(__name__)

_TOP_LEVEL_KEYS = {"pipeline", "jobs"}
_PIPELINE_KEYS = {"name", "trigger"}
_JOB_KEYS = {"id", "uses", "needs", "with", "name"}


def load_definition(path: Path | str, *, known_uses: Iterable[str] | None = None) -> PipelineDefinition:
    """Read and validate the definition at *path* (``.toml`` or ``.json``)."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise DefinitionError(f"Cannot read {path}: {exc}", problems=[str(exc)]) from exc
    fmt = "json" if path.suffix.lower() == ".json" else "toml"
    definition = loads_definition(text, fmt=fmt, source=str(path), known_uses=known_uses)
    logger.debug("Loaded %s from %s", definition.name, path)
    return definition


def loads_definition(
    text: str,
    *,
    fmt: str = "toml",
    source: str = "<string>",
    known_uses: Iterable[str] | None = None,
) -> PipelineDefinition:
    """Parse definition text in ``toml`` or ``json`` format."""
    try:
        if fmt == "json":
            data = json.loads(text)
        elif fmt == "toml":
            data = tomllib.loads(text)
        else:
            raise DefinitionError(f"Unsupported definition format {fmt!r}")
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as exc:
        raise DefinitionError(f"{source}: invalid {fmt.upper()}: {exc}", problems=[str(exc)]) from exc
    return parse_definition(data, source=source, known_uses=known_uses)


def parse_definition(
    data: Any,
    *,
    source: str = "<data>",
    known_uses: Iterable[str] | None = None,
) -> PipelineDefinition:
    """Validate an already-decoded definition document."""
    if not isinstance(data, dict):
        raise DefinitionError(f"{source}: definition must be a table/object")

    known = set(known_uses) if known_uses is not None else set(JOB_REGISTRY)
    problems: list[str] = []

    for key in sorted(set(data) - _TOP_LEVEL_KEYS):
        problems.append(f"unknown top-level key {key!r}")

    pipeline = data.get("pipeline")
    name = ""
    trigger = TriggerCondition()
    if not isinstance(pipeline, dict):
        problems.append("missing [pipeline] table")
    else:
        for key in sorted(set(pipeline) - _PIPELINE_KEYS):
            problems.append(f"unknown key {key!r} in [pipeline]")
        name = pipeline.get("name", "")
        if not isinstance(name, str) or not name:
            problems.append("[pipeline] needs a non-empty 'name'")
        try:
            trigger = TriggerCondition.model_validate(pipeline.get("trigger", {}))
        except ValidationError as exc:
            problems.extend(f"[pipeline.trigger] {_describe(err)}" for err in exc.errors())

    raw_jobs = data.get("jobs")
    jobs: list[JobDefinition] = []
    if not isinstance(raw_jobs, list) or not raw_jobs:
        problems.append("at least one [[jobs]] entry is required")
        raw_jobs = []
    for index, raw in enumerate(raw_jobs):
        label = f"jobs[{index}]"
        if not isinstance(raw, dict):
            problems.append(f"{label} must be a table")
            continue
        label = f"job {raw.get('id', index)!r}"
        for key in sorted(set(raw) - _JOB_KEYS):
            problems.append(f"unknown key {key!r} in {label}")
        try:
            job = JobDefinition.model_validate(
                {
                    "id": raw.get("id"),
                    "uses": raw.get("uses"),
                    "needs": raw.get("needs", []),
                    "with": raw.get("with", {}),
                    "display_name": raw.get("name", ""),
                }
            )
        except ValidationError as exc:
            problems.extend(f"{label}: {_describe(err)}" for err in exc.errors())
            continue
        if job.uses not in known:
            problems.append(f"{label}: unknown uses {job.uses!r} (known: {sorted(known)})")
        jobs.append(job)

    if jobs:
        try:
            JobGraph(jobs)
        except DefinitionError as exc:
            problems.extend(exc.problems)

    if problems:
        raise DefinitionError(
            f"{source}: invalid pipeline definition: " + "; ".join(problems),
            problems=problems,
        )
    return PipelineDefinition(name=name, trigger=trigger, jobs=jobs)


def _describe(error: dict[str, Any]) -> str:
    location = ".".join(str(part) for part in error.get("loc", ()))
    return f"{location}: {error.get('msg', 'invalid')}" if location else error.get("msg", "invalid")
