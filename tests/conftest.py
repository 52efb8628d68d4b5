"""Shared test fixtures for hack-helper tests."""

import json

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from httpx import ASGITransport

from hackhelper.client.api import ApiClient
from hackhelper.client.observer import MonitorOptions
from hackhelper.core.config import HackHelperSettings

RUN_ID = "abc123"
WORKFLOW = "/api/workflows/projectGenerationWorkflow"


def sse(payload: dict, message_id: str | None = None) -> str:
    """Encode one event-stream block."""
    block = f"id: {message_id}\n" if message_id else ""
    return f"{block}data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def step_event(step_id: str, status: str) -> str:
    return sse({"type": "step", "stepId": step_id, "status": status})


def status_event(status: str) -> str:
    return sse({"type": "status", "status": status})


def make_settings(**overrides) -> HackHelperSettings:
    values = {
        "api_url": "http://test",
        "api_key": "test_key",
        "poll_interval": 0.01,
        "stream_connect_timeout": 1.0,
        "file_check_interval": 0,
        "min_request_interval": 0,
        "max_retries": 3,
    }
    values.update(overrides)
    return HackHelperSettings(**values)


def fast_options(output_dir=None, **overrides) -> MonitorOptions:
    values = {
        "poll_interval": 0.01,
        "max_retries": 3,
        "stream_connect_timeout": 1.0,
        "file_check_interval": 0,
        "min_request_interval": 0,
        "output_dir": output_dir,
    }
    values.update(overrides)
    return MonitorOptions(**values)


# ─── Fake workflow runtime ───

SCAFFOLD_RECORD = {
    "steps": {
        "extractBrief": {"status": "success", "output": {"extractedBrief": "A tiny brief"}},
        "parseBrief": {"status": "success", "output": {"parsedBrief": {"projectName": "hi"}}},
        "scaffoldProject": {
            "status": "success",
            "output": {
                "scaffoldResult": "Scaffolded 2 files",
                "files": [
                    {"path": "README.md", "content": "# Hi"},
                    {"path": "src/index.ts", "content": "export {};\n"},
                ],
            },
        },
    }
}


class FakeRuntime:
    """State behind the fake runtime app; tests mutate it directly."""

    def __init__(self):
        self.run_id = RUN_ID
        self.create_status = 200
        self.create_body: object = {"runId": RUN_ID}
        self.start_status = 200
        self.events: list[str] = []
        self.snapshots: list[dict] = [{"status": "running"}]
        self.run_record: dict = {"steps": {}}
        self.runs_status = 200
        self.agent_replies: dict[str, dict] = {}
        self.started: list[dict] = []
        self.agent_requests: list[tuple[str, dict]] = []
        self.requests: list[tuple[str, str]] = []
        self._poll_index = 0

    def next_snapshot(self) -> dict:
        index = min(self._poll_index, len(self.snapshots) - 1)
        self._poll_index += 1
        return self.snapshots[index]

    def count(self, suffix: str) -> int:
        return sum(1 for _, path in self.requests if path.endswith(suffix))


def create_runtime_app(fake: FakeRuntime) -> FastAPI:
    app = FastAPI()

    @app.middleware("http")
    async def record(request: Request, call_next):
        fake.requests.append((request.method, request.url.path))
        return await call_next(request)

    @app.get("/api")
    async def api_root():
        return {"status": "ok"}

    @app.post(WORKFLOW + "/createRun")
    async def create_run():
        return JSONResponse(fake.create_body, status_code=fake.create_status)

    @app.post(WORKFLOW + "/start-async")
    async def start_async(request: Request):
        body = await request.json()
        fake.started.append(body)
        if fake.start_status >= 400:
            return JSONResponse({"error": "cannot start"}, status_code=fake.start_status)
        return {"message": "Workflow run started"}

    @app.get(WORKFLOW + "/watch")
    async def watch(request: Request, runId: str):
        if "text/event-stream" in request.headers.get("accept", ""):
            return StreamingResponse(iter(list(fake.events)), media_type="text/event-stream")
        return fake.next_snapshot()

    @app.get(WORKFLOW + "/runs")
    async def runs(runId: str):
        if fake.runs_status >= 400:
            return JSONResponse({"error": "boom"}, status_code=fake.runs_status)
        return fake.run_record

    @app.post("/api/agents/{agent_id}/generate")
    async def generate(agent_id: str, request: Request):
        fake.agent_requests.append((agent_id, await request.json()))
        reply = fake.agent_replies.get(agent_id, {"text": ""})
        return JSONResponse(reply.get("body", reply), status_code=reply.get("status_code", 200))

    return app


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def runtime_transport(fake_runtime) -> ASGITransport:
    return ASGITransport(app=create_runtime_app(fake_runtime))


@pytest_asyncio.fixture
async def api(runtime_transport):
    """ApiClient wired to the fake runtime, with no filesystem candidates."""
    async with ApiClient(make_settings(), transport=runtime_transport, providers=[]) as client:
        yield client


def mock_api(handler, **settings) -> ApiClient:
    """ApiClient over an ``httpx.MockTransport`` for failure-mode tests."""
    return ApiClient(make_settings(**settings), transport=httpx.MockTransport(handler), providers=[])
