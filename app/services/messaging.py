"""Outbound message selection: free-form text first, approved template as fallback."""

from __future__ import annotations

import logging
from typing import Optional

from app.services.ports import Transport
from app.types.contracts import OutboundContent, SendResult, TemplateContent, TextContent

_LOGGER = logging.getLogger(__name__)

# Provider errors meaning "free-form messages are not allowed right now"
# (outside the customer-care session window).
SESSION_WINDOW_ERRORS = ("63016", "63051", "24-hour", "24 hour", "session window")


def outside_session_window(error: Optional[str]) -> bool:
    if not error:
        return False
    lowered = error.lower()
    return any(marker in lowered for marker in SESSION_WINDOW_ERRORS)


class Messenger:
    def __init__(self, transport: Transport):
        self._transport = transport

    async def _send(self, to: str, content: OutboundContent) -> SendResult:
        try:
            return await self._transport.send_message(to, content)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.error("Transport raised while sending to %s: %s", to, exc)
            return SendResult(success=False, status="failed", error=str(exc))

    async def send(self, to: str, text: str, template: str = "reply") -> SendResult:
        """Send ``text``; retry once as ``template`` if free-form is refused.

        Never raises: failures come back as a ``SendResult``.
        """
        result = await self._send(to, TextContent(body=text))
        if result.accepted:
            return result

        if outside_session_window(result.error):
            _LOGGER.warning("Free-form message refused for %s, falling back to template %s", to, template)
            return await self._send(to, TemplateContent(name=template, params=[text]))

        _LOGGER.error("Message to %s failed: %s", to, result.error)
        return result
