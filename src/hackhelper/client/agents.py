"""One-shot calls to the feature-enhancer and deployer agents."""

from __future__ import annotations
import logging

import httpx

from hackhelper.client.runtime import RuntimeClient
from hackhelper.schemas.agent import AgentRequest, AgentResponse, Message
from hackhelper.schemas.run import ScaffoldFile

logger = logging.getLogger("hackhelper.agents")

FEATURE_ENHANCER_AGENT = "featureEnhancerAgent"
DEPLOYER_AGENT = "deployerAgent"


def _error_detail(resp: httpx.Response) -> str:
    if resp.headers.get("content-type", "").startswith("application/json"):
        try:
            body = resp.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
    return resp.text[:500] or resp.reason_phrase


class AgentClient:
    """Wraps ``/api/agents/<agent>/generate``. Failures come back as unsuccessful responses."""

    def __init__(self, runtime: RuntimeClient):
        self.runtime = runtime

    async def generate(
        self,
        agent_id: str,
        prompt: str,
        project_path: str | None = None,
    ) -> AgentResponse:
        request = AgentRequest(
            messages=[Message(role="user", content=prompt)],
            project_path=project_path,
        )
        try:
            data = await self.runtime.generate(agent_id, request)
        except httpx.HTTPStatusError as e:
            logger.warning(f"{agent_id} returned HTTP {e.response.status_code}")
            return AgentResponse(success=False, error=_error_detail(e.response))
        except httpx.HTTPError as e:
            logger.warning(f"{agent_id} request failed: {e}")
            return AgentResponse(success=False, error=str(e) or type(e).__name__)
        except ValueError as e:
            return AgentResponse(success=False, error=f"Malformed response from {agent_id}: {e}")

        if not isinstance(data, dict):
            data = {}
        files = [
            ScaffoldFile.model_validate(f)
            for f in data.get("files") or []
            if isinstance(f, dict) and isinstance(f.get("path"), str)
        ]
        return AgentResponse(
            messages=[
                *request.messages,
                Message(role="assistant", content=data.get("text") or ""),
            ],
            generated_files=files,
        )

    async def add_feature(self, feature: str, project_path: str | None = None) -> AgentResponse:
        return await self.generate(FEATURE_ENHANCER_AGENT, f"Add feature: {feature}", project_path)

    async def deploy(self, platform: str = "vercel", project_path: str | None = None) -> AgentResponse:
        return await self.generate(DEPLOYER_AGENT, f"Deploy my project to {platform}", project_path)
