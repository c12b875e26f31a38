import json

import httpx
import pytest

from helpdesk import api_client
from helpdesk.api_client import HelpdeskClient


def _client(handler):
    return HelpdeskClient("https://helpdesk.example.com/", "secret", transport=httpx.MockTransport(handler))


def test_create_conversation_posts_payload():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["token"] = request.headers.get("api_access_token")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": 321, "status": "open"})

    conversation_id = _client(handler).create_conversation(
        account_id=1, contact_id=2, inbox_id=3, source_id="5521999999999"
    )

    assert conversation_id == 321
    assert seen["url"] == "https://helpdesk.example.com/api/v1/accounts/1/conversations"
    assert seen["token"] == "secret"
    assert seen["body"] == {"source_id": "5521999999999", "inbox_id": 3, "contact_id": 2, "status": "open"}


def test_create_conversation_http_error():
    client = _client(lambda request: httpx.Response(422, json={"error": "invalid"}))
    with pytest.raises(httpx.HTTPStatusError):
        client.create_conversation(1, 2, 3, "x")


def test_create_conversation_without_id():
    client = _client(lambda request: httpx.Response(200, json={"status": "open"}))
    with pytest.raises(httpx.HTTPError):
        client.create_conversation(1, 2, 3, "x")


def test_client_requires_base_url(monkeypatch):
    monkeypatch.setattr(api_client.settings, "HELPDESK_API_URL", "")
    with pytest.raises(RuntimeError):
        HelpdeskClient()
