"""Run initiator — creates and starts a project-generation run."""

from __future__ import annotations
import logging
import re

import httpx
from pydantic import ValidationError

from hackhelper.client.runtime import RuntimeClient
from hackhelper.core.errors import InitiationError
from hackhelper.schemas.run import CreateRunResponse, RunInput

logger = logging.getLogger("hackhelper.initiator")

PROJECT_NAME_MAX_LENGTH = 30


def derive_project_name(idea: str) -> str:
    """Slugify a project idea into a project name."""
    slug = re.sub(r"[^a-z0-9\s-]", "", idea.lower())
    slug = re.sub(r"\s+", "-", slug.strip())
    slug = re.sub(r"-+", "-", slug)
    slug = slug[:PROJECT_NAME_MAX_LENGTH].strip("-")
    return slug or "project"


class RunInitiator:
    """Obtains a run id from the runtime and kicks the run off.

    There is no retry here; any failure to get a usable run id is an
    ``InitiationError``.
    """

    def __init__(self, runtime: RuntimeClient):
        self.runtime = runtime

    async def create_run(self) -> str:
        try:
            body = await self.runtime.create_run()
        except httpx.HTTPStatusError as e:
            raise InitiationError(
                f"Failed to create workflow run: {e.response.status_code}. Details: {e.response.text[:500]}"
            ) from e
        except httpx.HTTPError as e:
            raise InitiationError(f"Failed to create workflow run: {e}") from e
        except ValueError as e:
            raise InitiationError(f"createRun returned a malformed body: {e}") from e

        try:
            run_id = CreateRunResponse.model_validate(body).run_id
        except ValidationError as e:
            raise InitiationError("No runId returned from createRun endpoint") from e

        logger.info(f"Created run {run_id}")
        return run_id

    async def start_run(self, run_id: str, idea: str, project_name: str) -> None:
        try:
            await self.runtime.start_run(
                run_id, RunInput(project_idea=idea, project_name=project_name)
            )
        except httpx.HTTPStatusError as e:
            raise InitiationError(
                f"Workflow start failed with status: {e.response.status_code}. Details: {e.response.text[:500]}"
            ) from e
        except httpx.HTTPError as e:
            raise InitiationError(f"Workflow start failed: {e}") from e
        logger.info(f"Started run {run_id} ({project_name})")

    async def initialize(self, idea: str, project_name: str | None = None) -> str:
        """Create a run for ``idea``, start it, and return its run id."""
        if not idea or not idea.strip():
            raise InitiationError("A project idea is required")
        name = project_name or derive_project_name(idea)
        run_id = await self.create_run()
        await self.start_run(run_id, idea, name)
        return run_id
