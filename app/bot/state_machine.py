"""Conversation state machine that turns SMS replies into reminder definitions.

Each inbound text is handled by exactly one branch of ``transition``,
selected by the user's current ``ConversationState``. Outbound replies and
store writes happen while the branch runs; the resulting state and context
are persisted by ``handle`` afterwards.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import NamedTuple, Optional

from app.bot import commands
from app.bot import messages
from app.bot.commands import MenuAction
from app.errors import StoreError, TimeResolutionError
from app.services.messaging import Messenger
from app.services.ports import ReminderStore
from app.services.time_resolver import TimeResolver
from app.types.contracts import (
    ConversationContext,
    ConversationState,
    DeleteMenu,
    ReminderDefinition,
    ReminderKind,
    ReminderType,
    User,
)
from app.utils.clock import Clock, format_hhmm, local_now, next_day, parse_hhmm, service_tz

_LOGGER = logging.getLogger(__name__)


class Transition(NamedTuple):
    state: ConversationState
    context: ConversationContext


class ConversationStateMachine:
    def __init__(
        self,
        store: ReminderStore,
        resolver: TimeResolver,
        messenger: Messenger,
        clock: Clock = local_now,
        default_location: str = "Jerusalem",
        tz=None,
    ):
        self._store = store
        self._resolver = resolver
        self._messenger = messenger
        self._clock = clock
        self._default_location = default_location
        self._tz = tz or service_tz()

    # ──────────────────────────────
    # Entry points
    # ──────────────────────────────

    async def handle(self, user: User, text: str) -> Transition:
        """Run one transition and persist the result when it changed."""
        result = await self.transition(user, text)
        if result.state != user.current_state or result.context != user.context:
            try:
                await self._store.update_user_state(user.id, result.state, result.context)
            except Exception as exc:  # noqa: BLE001
                _LOGGER.error("Failed to persist state %s for user %s: %s", result.state.value, user.id, exc)
        return result

    async def transition(self, user: User, text: str) -> Transition:
        state = user.current_state
        context = user.context

        if commands.is_help(text):
            await self._reply(user, messages.HELP)
            return Transition(state, context)

        if commands.is_stop(text):
            return await self._unsubscribe(user)

        match state:
            case ConversationState.INITIAL | ConversationState.CONFIRMED:
                await self._reply(user, messages.TYPE_MENU)
                return Transition(ConversationState.SELECTING_REMINDER_TYPE, ConversationContext())
            case ConversationState.SELECTING_REMINDER_TYPE:
                return await self._select_type(user, text)
            case ConversationState.SELECTING_EVENT_OFFSET:
                return await self._select_offset(user, text)
            case ConversationState.SELECTING_TIME:
                return await self._select_time(user, text)
            case ConversationState.SELECTING_LOCATION:
                return await self._select_location(user, text)
            case ConversationState.SELECTING_DEFINITION_TO_DELETE:
                return await self._select_deletion(user, text, context)

        _LOGGER.warning("User %s is in unknown state %s; restarting", user.id, state)
        await self._reply(user, messages.TYPE_MENU)
        return Transition(ConversationState.SELECTING_REMINDER_TYPE, ConversationContext())

    # ──────────────────────────────
    # Helpers
    # ──────────────────────────────

    async def _reply(self, user: User, text: str) -> None:
        await self._messenger.send(user.phone_number, text)

    async def _failed(self, user: User, exc: Exception) -> Transition:
        _LOGGER.error("Store failure for user %s in %s: %s", user.id, user.current_state.value, exc)
        await self._reply(user, messages.ERROR)
        return Transition(user.current_state, user.context)

    async def _save(self, definition: ReminderDefinition) -> ReminderDefinition:
        saved = await self._store.upsert_definition(definition)
        _LOGGER.info(
            "Saved %s reminder user=%s kind=%s time=%s location=%s",
            saved.reminder_type.value,
            saved.user_id,
            saved.kind.value,
            saved.time,
            saved.location,
        )
        return saved

    def _done(self) -> Transition:
        return Transition(ConversationState.CONFIRMED, ConversationContext())

    # ──────────────────────────────
    # State branches
    # ──────────────────────────────

    async def _unsubscribe(self, user: User) -> Transition:
        try:
            disabled = await self._store.disable_all_for_user(user.id)
        except StoreError as exc:
            return await self._failed(user, exc)
        _LOGGER.info("User %s unsubscribed; %d reminder(s) disabled", user.id, disabled)
        await self._reply(user, messages.UNSUBSCRIBED)
        return self._done()

    async def _select_type(self, user: User, text: str) -> Transition:
        choice = commands.parse_type_choice(text)
        if choice is None:
            await self._reply(user, messages.TYPE_MENU)
            return Transition(user.current_state, user.context)

        if choice is MenuAction.DELETE:
            return await self._select_deletion(user, text, ConversationContext())

        context = ConversationContext(pending_type=choice)
        if choice is ReminderType.TEFILLIN:
            await self._reply(user, messages.OFFSET_MENU)
            return Transition(ConversationState.SELECTING_EVENT_OFFSET, context)
        if choice is ReminderType.CUSTOM:
            await self._reply(user, messages.TIME_PROMPT)
            return Transition(ConversationState.SELECTING_TIME, context)

        await self._reply(user, messages.location_prompt(self._default_location))
        return Transition(ConversationState.SELECTING_LOCATION, context)

    async def _select_offset(self, user: User, text: str) -> Transition:
        reminder_type = user.context.pending_type or ReminderType.TEFILLIN
        location = user.context.location or self._default_location

        offset = commands.parse_offset_choice(text)
        if offset is None:
            hhmm = parse_hhmm(text)
            if hhmm is None:
                await self._reply(user, messages.OFFSET_MENU)
                return Transition(user.current_state, user.context)
            # A clock time instead of an offset becomes a fixed reminder.
            definition = ReminderDefinition(
                user_id=user.id, reminder_type=reminder_type, kind=ReminderKind.FIXED, time=hhmm
            )
            try:
                await self._save(definition)
            except StoreError as exc:
                return await self._failed(user, exc)
            await self._reply(user, messages.fixed_confirmation(reminder_type, hhmm))
            return self._done()

        now = self._clock().astimezone(self._tz)
        today = now.date()
        try:
            sunset = await self._sunset(location, today)
            fire = sunset - timedelta(minutes=offset) if sunset else None
            tomorrow = False
            # the tick for the fire minute may already have run
            if fire is not None and fire <= now:
                tomorrow = True
                sunset = await self._sunset(location, next_day(today))
                fire = sunset - timedelta(minutes=offset) if sunset else None
        except TimeResolutionError as exc:
            _LOGGER.warning("Cannot resolve sunset for user %s: %s", user.id, exc)
            sunset = fire = None

        if fire is None:
            await self._reply(user, messages.sunset_unavailable(location))
            return Transition(user.current_state, user.context)

        fire_hhmm = format_hhmm(fire, self._tz)
        definition = ReminderDefinition(
            user_id=user.id,
            reminder_type=reminder_type,
            kind=ReminderKind.EVENT_OFFSET,
            location=location,
            time=fire_hhmm,
            offset_minutes=offset,
            event_time=sunset,
        )
        try:
            await self._save(definition)
        except StoreError as exc:
            return await self._failed(user, exc)

        await self._reply(user, messages.offset_confirmation(offset, fire_hhmm, tomorrow))
        return self._done()

    async def _sunset(self, location: str, day) -> Optional[datetime]:
        times = await self._resolver.resolve(location, day)
        return times.sunset

    async def _select_time(self, user: User, text: str) -> Transition:
        hhmm = parse_hhmm(text)
        if hhmm is None:
            await self._reply(user, messages.INVALID_TIME)
            return Transition(user.current_state, user.context)

        reminder_type = user.context.pending_type or ReminderType.CUSTOM
        definition = ReminderDefinition(
            user_id=user.id, reminder_type=reminder_type, kind=ReminderKind.FIXED, time=hhmm
        )
        try:
            await self._save(definition)
        except StoreError as exc:
            return await self._failed(user, exc)

        await self._reply(user, messages.fixed_confirmation(reminder_type, hhmm))
        return self._done()

    async def _select_location(self, user: User, text: str) -> Transition:
        location = text.strip() or self._default_location
        reminder_type = user.context.pending_type or ReminderType.SUNSET
        definition = ReminderDefinition(
            user_id=user.id, reminder_type=reminder_type, kind=ReminderKind.EVENT, location=location
        )
        try:
            await self._save(definition)
        except StoreError as exc:
            return await self._failed(user, exc)

        await self._reply(user, messages.event_confirmation(reminder_type, location))
        return self._done()

    async def _select_deletion(self, user: User, text: str, context: ConversationContext) -> Transition:
        try:
            definitions = [d for d in await self._store.list_definitions(user.id) if d.enabled]
        except StoreError as exc:
            return await self._failed(user, exc)

        if not definitions:
            await self._reply(user, messages.NOTHING_TO_DELETE)
            return Transition(ConversationState.INITIAL, ConversationContext())

        awaiting = context.model_copy(update={"delete_menu": DeleteMenu.AWAITING_SELECTION})
        if context.delete_menu is DeleteMenu.MENU_NOT_YET_SHOWN:
            await self._reply(user, messages.delete_menu(definitions))
            return Transition(ConversationState.SELECTING_DEFINITION_TO_DELETE, awaiting)

        index = commands.parse_index(text, len(definitions))
        if index is None:
            await self._reply(user, messages.delete_menu(definitions))
            return Transition(ConversationState.SELECTING_DEFINITION_TO_DELETE, awaiting)

        chosen = definitions[index]
        try:
            await self._store.delete_definition(chosen.id)
        except StoreError as exc:
            return await self._failed(user, exc)

        _LOGGER.info("User %s deleted %s reminder %s", user.id, chosen.reminder_type.value, chosen.id)
        await self._reply(user, messages.deleted(chosen))
        return Transition(ConversationState.INITIAL, ConversationContext())
