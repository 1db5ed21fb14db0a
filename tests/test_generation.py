# tests/test_generation.py
from unittest.mock import MagicMock, patch

import pytest
import requests

from cyberchat.config import ChatSettings
from cyberchat.generation import GenerationClient, GenerationError
from cyberchat.schemas import ChatMessage
from cyberchat.stream import StreamSession

SETTINGS = ChatSettings(model="openrouter/auto", api_key="sk-test")
MESSAGES = [ChatMessage(role="system", content="Be brief."), ChatMessage(role="user", content="Hi")]


def _client():
    return GenerationClient("https://example.test/v1/chat", site_url="http://localhost:9002", app_title="CyberChat AI")


def test_stream_chat_posts_streaming_request():
    mock_response = MagicMock()
    mock_response.ok = True

    with patch("cyberchat.generation.requests.post", return_value=mock_response) as post:
        session = _client().stream_chat(SETTINGS, MESSAGES)

    assert isinstance(session, StreamSession)
    args, kwargs = post.call_args
    assert args[0] == "https://example.test/v1/chat"
    assert kwargs["stream"] is True
    assert kwargs["headers"]["Authorization"] == "Bearer sk-test"
    assert kwargs["headers"]["HTTP-Referer"] == "http://localhost:9002"
    assert kwargs["headers"]["X-Title"] == "CyberChat AI"
    body = kwargs["json"]
    assert body["model"] == "openrouter/auto"
    assert body["stream"] is True
    assert body["messages"][1] == {"role": "user", "content": "Hi"}


def test_error_status_uses_server_message():
    mock_response = MagicMock()
    mock_response.ok = False
    mock_response.status_code = 401
    mock_response.json.return_value = {"error": {"message": "No auth credentials found"}}

    with patch("cyberchat.generation.requests.post", return_value=mock_response):
        with pytest.raises(GenerationError, match="No auth credentials found") as excinfo:
            _client().stream_chat(SETTINGS, MESSAGES)

    assert excinfo.value.status_code == 401
    mock_response.close.assert_called_once()


def test_error_status_without_json_body():
    mock_response = MagicMock()
    mock_response.ok = False
    mock_response.status_code = 502
    mock_response.reason = "Bad Gateway"
    mock_response.json.side_effect = ValueError("no json")

    with patch("cyberchat.generation.requests.post", return_value=mock_response):
        with pytest.raises(GenerationError, match="API Error: 502 Bad Gateway"):
            _client().stream_chat(SETTINGS, MESSAGES)


def test_missing_body_is_an_error():
    mock_response = MagicMock()
    mock_response.ok = True
    mock_response.raw = None

    with patch("cyberchat.generation.requests.post", return_value=mock_response):
        with pytest.raises(GenerationError, match="null"):
            _client().stream_chat(SETTINGS, MESSAGES)


def test_connection_failure_becomes_generation_error():
    with patch("cyberchat.generation.requests.post", side_effect=requests.ConnectionError("refused")):
        with pytest.raises(GenerationError, match="Failed to connect to AI"):
            _client().stream_chat(SETTINGS, MESSAGES)
