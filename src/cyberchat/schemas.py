from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    """A role/content pair; content is multi-part for image turns."""
    role: Literal["system", "user", "assistant"]
    content: str | list[dict[str, Any]]


class GenerationRequest(BaseModel):
    model: str
    messages: list[ChatMessage]
    stream: bool = True


class SearchResponse(BaseModel):
    """Search collaborator output: findings markdown or a failure sentence."""
    model_config = ConfigDict(populate_by_name=True)

    search_results_markdown: str = Field(default="", alias="searchResultsMarkdown")


class SettingsPayload(BaseModel):
    provider: str
    model: str
    api_key: str = Field(default="", alias="apiKey")

    model_config = ConfigDict(populate_by_name=True)


class SettingsUpdateMessage(BaseModel):
    """Broadcast envelope for settings changes."""
    type: Literal["SETTINGS_UPDATE"] = "SETTINGS_UPDATE"
    payload: SettingsPayload
    source_id: str
