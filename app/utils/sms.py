"""Telnyx SMS transport."""

from __future__ import annotations

import asyncio
import logging
from uuid import uuid4

import telnyx
from telnyx.error import TelnyxError

from app.bot.messages import render_template
from app.types.contracts import OutboundContent, SendResult, TemplateContent

_LOGGER = logging.getLogger(__name__)


def _first_status(message) -> str:
    recipients = message.get("to") or []
    if recipients:
        return recipients[0].get("status") or "queued"
    return "queued"


class TelnyxTransport:
    """Sends SMS through Telnyx.

    SMS has no provider-side templates, so template content is rendered
    locally and sent as text. Without credentials the transport runs in dev
    mode and only logs what it would send.
    """

    def __init__(self, api_key: str | None, from_number: str | None, timeout: float = 10.0):
        self.api_key = api_key
        self.from_number = from_number
        self.timeout = timeout
        if api_key:
            telnyx.api_key = api_key

    @property
    def dev_mode(self) -> bool:
        return not self.api_key or not self.from_number

    def _create(self, to: str, text: str):
        return telnyx.Message.create(from_=self.from_number, to=to, text=text)

    async def send_message(self, to: str, content: OutboundContent) -> SendResult:
        if isinstance(content, TemplateContent):
            text = render_template(content.name, content.params)
        else:
            text = content.body

        if self.dev_mode:
            _LOGGER.info("[SMS] DEV mode: would send to %s: %s", to, text)
            return SendResult(success=True, message_id=f"dev-{uuid4()}", status="queued")

        try:
            message = await asyncio.wait_for(asyncio.to_thread(self._create, to, text), timeout=self.timeout)
        except asyncio.TimeoutError:
            return SendResult(success=False, status="failed", error=f"telnyx timeout after {self.timeout}s")
        except TelnyxError as exc:
            _LOGGER.warning("Telnyx rejected message to %s: %s", to, exc)
            return SendResult(success=False, status="failed", error=str(exc))

        status = _first_status(message)
        return SendResult(success=status != "failed", message_id=message.get("id"), status=status)
