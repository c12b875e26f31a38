"""Render the text of a session message payload for the helpdesk."""

from typing import Any

_WRAPPERS = (
    "ephemeralMessage",
    "viewOnceMessage",
    "viewOnceMessageV2",
    "viewOnceMessageV2Extension",
    "documentWithCaptionMessage",
    "editedMessage",
)

_CAPTIONED = ("imageMessage", "videoMessage", "documentMessage")


def _unwrap(message: dict[str, Any]) -> dict[str, Any]:
    for _ in range(len(_WRAPPERS)):
        for key in _WRAPPERS:
            inner = message.get(key)
            if isinstance(inner, dict) and isinstance(inner.get("message"), dict):
                message = inner["message"]
                break
        else:
            return message
    return message


def _dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


def message_content(message: dict[str, Any] | None) -> str | None:
    """Text to store for a message, or None when there is nothing renderable (reactions, protocol, ...)."""
    if not isinstance(message, dict) or not message:
        return None
    message = _unwrap(message)

    text = _text(message.get("conversation"))
    if text:
        return text

    extended = _dict(message.get("extendedTextMessage"))
    text = _text(extended.get("text"))
    if text:
        return text

    for key in _CAPTIONED:
        media = message.get(key)
        if isinstance(media, dict):
            text = _text(media.get("caption"))
            if text:
                return text
            if key == "documentMessage":
                return _text(media.get("fileName")) or _text(media.get("title"))

    contact = message.get("contactMessage")
    if isinstance(contact, dict):
        return _text(contact.get("displayName"))

    location = message.get("locationMessage") or message.get("liveLocationMessage")
    if isinstance(location, dict):
        lat = location.get("degreesLatitude")
        lng = location.get("degreesLongitude")
        if lat is not None and lng is not None:
            name = _text(location.get("name"))
            coords = f"Latitude: {lat}\nLongitude: {lng}"
            return f"{name}\n{coords}" if name else coords

    list_reply = message.get("listResponseMessage")
    if isinstance(list_reply, dict):
        return _text(list_reply.get("title")) or _text(
            _dict(list_reply.get("singleSelectReply")).get("selectedRowId")
        )

    buttons_reply = message.get("buttonsResponseMessage")
    if isinstance(buttons_reply, dict):
        return _text(buttons_reply.get("selectedDisplayText"))

    template_reply = message.get("templateButtonReplyMessage")
    if isinstance(template_reply, dict):
        return _text(template_reply.get("selectedDisplayText"))

    return None
