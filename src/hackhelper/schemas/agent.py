"""Pydantic schemas for agent generate calls."""

from typing import Literal

from pydantic import BaseModel, Field

from hackhelper.schemas.run import ScaffoldFile


class Message(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str


class AgentRequest(BaseModel):
    messages: list[Message]
    project_path: str | None = Field(default=None, serialization_alias="projectPath")


class AgentResponse(BaseModel):
    """Result of one agent call, successful or not."""

    success: bool = True
    messages: list[Message] = Field(default_factory=list)
    generated_files: list[ScaffoldFile] = Field(default_factory=list)
    error: str | None = None

    @property
    def reply(self) -> str:
        for message in reversed(self.messages):
            if message.role == "assistant":
                return message.content
        return ""
