"""Runtime client — thin async HTTP wrapper over the workflow runtime API."""

from __future__ import annotations
import logging
from typing import Any

import httpx

from hackhelper.client.throttle import RequestThrottle
from hackhelper.schemas.agent import AgentRequest
from hackhelper.schemas.run import RunInput, RunRecord, StartRunRequest, WatchSnapshot

logger = logging.getLogger("hackhelper.runtime")


class RuntimeClient:
    """Talks to the hosted workflow runtime.

    Every method maps to one endpoint and raises ``httpx.HTTPError`` (or
    ``ValueError`` for undecodable bodies); interpreting failures is left to
    the caller. Endpoints, relative to ``/api/workflows/<workflow_id>``:

    - ``POST /createRun`` → ``{runId}``
    - ``POST /start-async`` with ``{runId, inputData}``
    - ``GET /watch?runId=`` as an event stream, or as a JSON snapshot
    - ``GET /runs?runId=`` → ``{steps: {<stepId>: {status, output}}}``
    """

    def __init__(
        self,
        base_url: str,
        workflow_id: str = "projectGenerationWorkflow",
        api_key: str | None = None,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.workflow_id = workflow_id
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def connect(self) -> None:
        if self._client is not None:
            return
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def disconnect(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, *args):
        await self.disconnect()

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Runtime client not connected")
        return self._client

    def workflow_path(self, action: str) -> str:
        return f"/api/workflows/{self.workflow_id}/{action}"

    # ─── Run lifecycle ───

    async def create_run(self) -> Any:
        resp = await self.client.post(self.workflow_path("createRun"))
        resp.raise_for_status()
        return resp.json()

    async def start_run(self, run_id: str, run_input: RunInput) -> None:
        body = StartRunRequest(run_id=run_id, input_data=run_input)
        resp = await self.client.post(
            self.workflow_path("start-async"),
            json=body.model_dump(by_alias=True, exclude_none=True),
        )
        resp.raise_for_status()

    # ─── Observation ───

    async def open_watch_stream(self, run_id: str) -> httpx.Response:
        """Open the event stream for a run. The caller must ``aclose()`` the response."""
        request = self.client.build_request(
            "GET",
            self.workflow_path("watch"),
            params={"runId": run_id},
            headers={"Accept": "text/event-stream"},
            timeout=httpx.Timeout(self.timeout, read=None),
        )
        resp = await self.client.send(request, stream=True)
        if resp.is_error:
            await resp.aclose()
            resp.raise_for_status()
        return resp

    async def poll(self, run_id: str) -> WatchSnapshot:
        resp = await self.client.get(
            self.workflow_path("watch"),
            params={"runId": run_id},
            headers={"Accept": "application/json"},
        )
        resp.raise_for_status()
        return WatchSnapshot.model_validate(resp.json())

    async def get_run(self, run_id: str, throttle: RequestThrottle | None = None) -> RunRecord:
        if throttle is not None:
            await throttle.wait()
        resp = await self.client.get(self.workflow_path("runs"), params={"runId": run_id})
        resp.raise_for_status()
        return RunRecord.model_validate(resp.json())

    # ─── Agents ───

    async def generate(self, agent_id: str, request: AgentRequest) -> dict:
        resp = await self.client.post(
            f"/api/agents/{agent_id}/generate",
            json=request.model_dump(by_alias=True, exclude_none=True),
        )
        resp.raise_for_status()
        return resp.json()

    async def is_available(self) -> bool:
        try:
            resp = await self.client.get("/api")
            return resp.status_code == 200
        except httpx.HTTPError as e:
            logger.debug(f"Availability probe failed: {e}")
            return False
