import logging

import httpx

from helpdesk.config import settings

logger = logging.getLogger(__name__)


class HelpdeskClient:
    """Helpdesk REST API. Only conversation creation is needed by the history import."""

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.HELPDESK_API_URL or "").rstrip("/")
        self.token = token if token is not None else settings.HELPDESK_API_TOKEN
        self.timeout = timeout
        self._transport = transport
        if not self.base_url:
            raise RuntimeError("HELPDESK_API_URL is required. Set it in .env to create conversations via API.")
        logger.info("HelpdeskClient: %s", self.base_url)

    def _post(self, path: str, payload: dict) -> dict:
        with httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={"api_access_token": self.token},
            transport=self._transport,
        ) as client:
            resp = client.post(path, json=payload)
            resp.raise_for_status()
            return resp.json()

    def create_conversation(
        self, account_id: int, contact_id: int, inbox_id: int, source_id: str
    ) -> int:
        data = self._post(
            f"/api/v1/accounts/{account_id}/conversations",
            {
                "source_id": source_id,
                "inbox_id": inbox_id,
                "contact_id": contact_id,
                "status": "open",
            },
        )
        conversation_id = data.get("id") if isinstance(data, dict) else None
        if not isinstance(conversation_id, int):
            raise httpx.DecodingError(f"Conversation id missing in response: {data!r}")
        return conversation_id
