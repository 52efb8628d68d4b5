"""The surface the CLI uses to drive a project-generation run."""

from __future__ import annotations
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Sequence

import httpx

from hackhelper.client.agents import AgentClient
from hackhelper.client.candidates import CandidateProvider, default_providers
from hackhelper.client.initiator import RunInitiator, derive_project_name
from hackhelper.client.observer import (
    MonitorHandle,
    MonitorOptions,
    ProgressCallback,
    RunObserver,
    StatusCallback,
)
from hackhelper.client.reconciler import ArtifactReconciler, ReconcileResult
from hackhelper.client.runtime import RuntimeClient
from hackhelper.core.config import HackHelperSettings, get_settings
from hackhelper.schemas.agent import AgentResponse

logger = logging.getLogger("hackhelper.api")


@dataclass
class ProjectContext:
    project_name: str
    output_dir: Path | None = None


class ApiClient:
    """Initiates runs, monitors them, and recovers their files.

    Usage:
        async with ApiClient() as api:
            run_id = await api.initialize("a recipe planner", output_dir="./out")
            handle = await api.monitor(run_id, on_progress=print)
            await handle.wait()
    """

    def __init__(
        self,
        settings: HackHelperSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        providers: Sequence[CandidateProvider] | None = None,
    ):
        self.settings = settings or get_settings()
        self.runtime = RuntimeClient(
            base_url=self.settings.api_url,
            workflow_id=self.settings.workflow_id,
            api_key=self.settings.api_key,
            timeout=self.settings.request_timeout,
            transport=transport,
        )
        if providers is None:
            providers = default_providers(self.settings.scaffold_root)
        self.reconciler = ArtifactReconciler(self.runtime, providers)
        self.initiator = RunInitiator(self.runtime)
        self.agents = AgentClient(self.runtime)
        self._projects: dict[str, ProjectContext] = {}

    async def __aenter__(self):
        await self.runtime.connect()
        return self

    async def __aexit__(self, *args):
        await self.runtime.disconnect()

    async def is_available(self) -> bool:
        return await self.runtime.is_available()

    async def initialize(
        self,
        idea: str,
        project_name: str | None = None,
        output_dir: str | Path | None = None,
    ) -> str:
        """Create and start a run. Raises ``InitiationError`` if no usable run id comes back."""
        name = project_name or derive_project_name(idea)
        run_id = await self.initiator.initialize(idea, name)
        self._projects[run_id] = ProjectContext(
            project_name=name,
            output_dir=Path(output_dir) if output_dir is not None else None,
        )
        return run_id

    async def monitor(
        self,
        run_id: str,
        on_progress: ProgressCallback | None = None,
        on_status_update: StatusCallback | None = None,
        options: MonitorOptions | None = None,
    ) -> MonitorHandle:
        """Start following a run. Call the returned handle (or ``handle.stop()``) to stop."""
        project = self._projects.get(run_id)
        if options is None:
            options = MonitorOptions.from_settings(
                self.settings,
                output_dir=project.output_dir if project else None,
                project_name=project.project_name if project else None,
            )
        elif project is not None:
            options = replace(
                options,
                output_dir=options.output_dir if options.output_dir is not None else project.output_dir,
                project_name=options.project_name or project.project_name,
            )

        observer = RunObserver(
            self.runtime,
            run_id,
            self.reconciler,
            on_progress=on_progress,
            on_status_update=on_status_update,
            options=options,
        )
        return observer.start()

    async def ensure_files_extracted(
        self,
        output_dir: str | Path,
        run_id: str | None = None,
        project_name: str | None = None,
    ) -> ReconcileResult:
        if project_name is None and run_id in self._projects:
            project_name = self._projects[run_id].project_name
        return await self.reconciler.ensure_files_extracted(
            output_dir, run_id=run_id, project_name=project_name
        )

    async def add_feature(self, feature: str, project_path: str | None = None) -> AgentResponse:
        return await self.agents.add_feature(feature, project_path)

    async def deploy(self, platform: str = "vercel", project_path: str | None = None) -> AgentResponse:
        return await self.agents.deploy(platform, project_path)
