from __future__ import annotations

import logging

import requests

from .config import AppConfig, ChatSettings
from .schemas import ChatMessage, GenerationRequest
from .stream import StreamSession

log = logging.getLogger(__name__)


class GenerationError(Exception):
    """Transport failure talking to the completion endpoint."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def _error_message(response: requests.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return f"API Error: {response.status_code} {response.reason or ''}".strip()


class GenerationClient:
    """Streaming client for an OpenAI-compatible chat completions endpoint."""

    TIMEOUT = (10, 120)  # (connect, read) seconds

    def __init__(self, api_url: str, site_url: str = "", app_title: str = ""):
        self.api_url = api_url
        self.site_url = site_url
        self.app_title = app_title

    @classmethod
    def from_config(cls, config: AppConfig) -> GenerationClient:
        return cls(config.api_url, site_url=config.site_url, app_title=config.app_title)

    def _headers(self, api_key: str) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        if self.site_url:
            headers["HTTP-Referer"] = self.site_url
        if self.app_title:
            headers["X-Title"] = self.app_title
        return headers

    def stream_chat(self, settings: ChatSettings, messages: list[ChatMessage]) -> StreamSession:
        """
        Open a streaming completion.

        Args:
            settings: Snapshot of provider/model/credential for this run
            messages: Full message list including the system instruction

        Returns:
            StreamSession yielding decoded fragments

        Raises:
            GenerationError: Non-2xx status, missing body or connection failure
        """
        payload = GenerationRequest(model=settings.model, messages=messages)
        log.info(f"Requesting completion from {self.api_url} (model={settings.model}, messages={len(messages)})")

        try:
            response = requests.post(
                self.api_url,
                headers=self._headers(settings.api_key),
                json=payload.model_dump(),
                stream=True,
                timeout=self.TIMEOUT,
            )
        except requests.RequestException as e:
            raise GenerationError(f"Failed to connect to AI: {e}") from e

        if not response.ok:
            message = _error_message(response)
            response.close()
            log.error(f"Completion request failed ({response.status_code}): {message}")
            raise GenerationError(message, status_code=response.status_code)

        if response.raw is None:
            response.close()
            raise GenerationError("Response body is null.", status_code=response.status_code)

        return StreamSession(response)
