"""Pydantic schemas for workflow-runtime payloads."""

from typing import Any

from pydantic import BaseModel, Field, field_validator


class _Wire(BaseModel):
    model_config = {"populate_by_name": True, "extra": "ignore"}


class CreateRunResponse(_Wire):
    run_id: str = Field(alias="runId", min_length=1)


class RunInput(_Wire):
    project_idea: str = Field(alias="projectIdea")
    project_name: str | None = Field(default=None, alias="projectName")


class StartRunRequest(_Wire):
    run_id: str = Field(alias="runId")
    input_data: RunInput = Field(alias="inputData")


class ScaffoldFile(_Wire):
    path: str
    content: str | None = None

    @field_validator("content", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return "" if v is None else v


class StepRecord(_Wire):
    status: str = "pending"
    output: Any = None

    def files(self) -> list[ScaffoldFile] | None:
        """The ``files`` array of this step's output, or None if absent or malformed."""
        if not isinstance(self.output, dict):
            return None
        raw = self.output.get("files")
        if not isinstance(raw, list):
            return None
        files = []
        for item in raw:
            if isinstance(item, dict) and isinstance(item.get("path"), str):
                files.append(ScaffoldFile.model_validate(item))
        return files


class RunRecord(_Wire):
    status: str | None = None
    steps: dict[str, StepRecord] = Field(default_factory=dict)


class ActivePath(_Wire):
    status: str = "pending"
    step_path: list[str] = Field(default_factory=list, alias="stepPath")
    suspend_payload: Any = Field(default=None, alias="suspendPayload")


class WatchSnapshot(_Wire):
    run_id: str | None = Field(default=None, alias="runId")
    status: str | None = None
    results: dict[str, Any] = Field(default_factory=dict)
    active_paths: dict[str, ActivePath] = Field(default_factory=dict, alias="activePaths")
    timestamp: float | None = None

    @field_validator("active_paths", mode="before")
    @classmethod
    def _pairs_to_mapping(cls, v):
        # Map-typed fields sometimes arrive as a list of [key, value] pairs
        if isinstance(v, list):
            return {k: val for k, val in v if isinstance(k, str)}
        return v or {}

    @field_validator("results", mode="before")
    @classmethod
    def _results_mapping(cls, v):
        return v if isinstance(v, dict) else {}
