"""Entry point for inbound SMS: normalize the sender, load the user, run the bot."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from app.bot.commands import normalize_phone
from app.bot.state_machine import ConversationStateMachine, Transition
from app.services.ports import ReminderStore
from app.types.contracts import InboundMessage, User

_LOGGER = logging.getLogger(__name__)


class MessageHandler:
    """Serializes messages per user within this process.

    Two webhook deliveries for the same phone number never interleave their
    read-modify-write of the conversation state here; across processes they
    still can.
    """

    def __init__(self, store: ReminderStore, machine: ConversationStateMachine, country_code: str = "972"):
        self._store = store
        self._machine = machine
        self._country_code = country_code
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Counter[str] = Counter()

    @asynccontextmanager
    async def _user_lock(self, phone_number: str) -> AsyncIterator[None]:
        """Per-number lock, dropped once nobody holds or waits for it."""
        lock = self._locks.setdefault(phone_number, asyncio.Lock())
        self._holders[phone_number] += 1
        try:
            async with lock:
                yield
        finally:
            self._holders[phone_number] -= 1
            if not self._holders[phone_number]:
                del self._holders[phone_number]
                del self._locks[phone_number]

    async def _find_or_create(self, phone_number: str) -> User:
        user = await self._store.get_user_by_phone(phone_number)
        if user is None:
            user = await self._store.create_user(phone_number)
            _LOGGER.info("Created user %s for %s", user.id, phone_number)
        return user

    async def handle(self, message: InboundMessage) -> Optional[Transition]:
        phone_number = normalize_phone(message.from_, self._country_code)
        _LOGGER.info("Inbound %s message from %s", message.message_type, phone_number)

        async with self._user_lock(phone_number):
            try:
                user = await self._find_or_create(phone_number)
                return await self._machine.handle(user, message.body)
            except Exception as exc:  # noqa: BLE001
                _LOGGER.exception("Failed to handle message from %s: %s", phone_number, exc)
                return None
