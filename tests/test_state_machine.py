import pytest

from app.bot import messages
from app.bot.state_machine import ConversationStateMachine
from app.services.messaging import Messenger
from app.types.contracts import (
    ConversationContext,
    ConversationState,
    DeleteMenu,
    ReminderDefinition,
    ReminderKind,
    ReminderType,
    SendResult,
    TemplateContent,
)
from fakes import NEXT_DAY, FakeTransport, local


async def _new_user(store, state=ConversationState.INITIAL, context=None):
    user = await store.create_user("+972501234567")
    if state is not ConversationState.INITIAL or context is not None:
        await store.update_user_state(user.id, state, context or ConversationContext())
        store.state_writes = 0
    return store.users[user.id]


async def _say(machine, store, user_id, text):
    await machine.handle(store.users[user_id], text)
    return store.users[user_id]


@pytest.mark.asyncio
async def test_tefillin_offset_flow(machine, store, transport):
    user = await _new_user(store)

    user = await _say(machine, store, user.id, "hi")
    assert user.current_state is ConversationState.SELECTING_REMINDER_TYPE
    assert transport.bodies[-1] == messages.TYPE_MENU

    user = await _say(machine, store, user.id, "1")
    assert user.current_state is ConversationState.SELECTING_EVENT_OFFSET
    assert transport.bodies[-1] == messages.OFFSET_MENU

    user = await _say(machine, store, user.id, "2")
    assert user.current_state is ConversationState.CONFIRMED
    assert user.context == ConversationContext()

    (definition,) = store.definitions.values()
    assert definition.reminder_type is ReminderType.TEFILLIN
    assert definition.kind is ReminderKind.EVENT_OFFSET
    assert definition.offset_minutes == 30
    assert definition.location == "Jerusalem"
    assert definition.time == "19:20"
    assert "30 minutes before sunset" in transport.bodies[-1]
    assert "today at 19:20" in transport.bodies[-1]


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["HELP", "  help ", "עזרה"])
async def test_help_keeps_state(machine, store, transport, text):
    user = await _new_user(store)

    user = await _say(machine, store, user.id, text)

    assert user.current_state is ConversationState.INITIAL
    assert transport.bodies == [messages.HELP]
    assert store.state_writes == 0


@pytest.mark.asyncio
async def test_help_mid_flow_keeps_context(machine, store, transport):
    context = ConversationContext(pending_type=ReminderType.CANDLE)
    user = await _new_user(store, ConversationState.SELECTING_LOCATION, context)

    user = await _say(machine, store, user.id, "help")

    assert user.current_state is ConversationState.SELECTING_LOCATION
    assert user.context == context
    assert transport.bodies == [messages.HELP]


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["STOP", "unsubscribe", "ביטול"])
async def test_stop_disables_everything(machine, store, transport, text):
    user = await _new_user(store, ConversationState.SELECTING_TIME, ConversationContext(pending_type=ReminderType.CUSTOM))
    await store.upsert_definition(
        ReminderDefinition(user_id=user.id, reminder_type=ReminderType.CUSTOM, kind=ReminderKind.FIXED, time="08:00")
    )
    await store.upsert_definition(
        ReminderDefinition(
            user_id=user.id, reminder_type=ReminderType.SUNSET, kind=ReminderKind.EVENT, location="Haifa"
        )
    )

    user = await _say(machine, store, user.id, text)

    assert user.current_state is ConversationState.CONFIRMED
    assert all(not d.enabled for d in store.definitions.values())
    assert transport.bodies == [messages.UNSUBSCRIBED]


@pytest.mark.asyncio
@pytest.mark.parametrize("entered, stored", [("18:30", "18:30"), ("9:05", "09:05"), ("00:00", "00:00")])
async def test_custom_time_round_trip(machine, store, transport, entered, stored):
    user = await _new_user(store, ConversationState.SELECTING_REMINDER_TYPE)

    user = await _say(machine, store, user.id, "2")
    assert user.current_state is ConversationState.SELECTING_TIME
    assert transport.bodies[-1] == messages.TIME_PROMPT

    user = await _say(machine, store, user.id, entered)

    assert user.current_state is ConversationState.CONFIRMED
    (definition,) = store.definitions.values()
    assert definition.kind is ReminderKind.FIXED
    assert definition.reminder_type is ReminderType.CUSTOM
    assert definition.time == stored


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["25:00", "18:60", "6pm", "1830", ""])
async def test_invalid_time_reprompts(machine, store, transport, text):
    context = ConversationContext(pending_type=ReminderType.CUSTOM)
    user = await _new_user(store, ConversationState.SELECTING_TIME, context)

    user = await _say(machine, store, user.id, text)

    assert user.current_state is ConversationState.SELECTING_TIME
    assert user.context == context
    assert transport.bodies == [messages.INVALID_TIME]
    assert not store.definitions


@pytest.mark.asyncio
async def test_offset_rolls_over_to_tomorrow(machine, store, transport, clock):
    clock.set(19, 40)
    user = await _new_user(
        store, ConversationState.SELECTING_EVENT_OFFSET, ConversationContext(pending_type=ReminderType.TEFILLIN)
    )

    user = await _say(machine, store, user.id, "30")

    assert user.current_state is ConversationState.CONFIRMED
    (definition,) = store.definitions.values()
    assert definition.time == "19:21"
    assert definition.event_time == local(NEXT_DAY, 19, 51)
    assert "tomorrow at 19:21" in transport.bodies[-1]


@pytest.mark.asyncio
@pytest.mark.parametrize("second", [0, 30])
async def test_offset_within_fire_minute_rolls_over(machine, store, transport, clock, second):
    clock.set(19, 20, second)
    user = await _new_user(
        store, ConversationState.SELECTING_EVENT_OFFSET, ConversationContext(pending_type=ReminderType.TEFILLIN)
    )

    await _say(machine, store, user.id, "30")

    (definition,) = store.definitions.values()
    assert definition.time == "19:21"
    assert definition.event_time == local(NEXT_DAY, 19, 51)
    assert "tomorrow at 19:21" in transport.bodies[-1]


@pytest.mark.asyncio
async def test_offset_before_fire_minute_stays_today(machine, store, transport, clock):
    clock.set(19, 19, 59)
    user = await _new_user(
        store, ConversationState.SELECTING_EVENT_OFFSET, ConversationContext(pending_type=ReminderType.TEFILLIN)
    )

    await _say(machine, store, user.id, "30")

    (definition,) = store.definitions.values()
    assert definition.time == "19:20"
    assert "today at 19:20" in transport.bodies[-1]


@pytest.mark.asyncio
async def test_offset_accepts_clock_time(machine, store, transport):
    user = await _new_user(
        store, ConversationState.SELECTING_EVENT_OFFSET, ConversationContext(pending_type=ReminderType.TEFILLIN)
    )

    user = await _say(machine, store, user.id, "6:45")

    assert user.current_state is ConversationState.CONFIRMED
    (definition,) = store.definitions.values()
    assert definition.reminder_type is ReminderType.TEFILLIN
    assert definition.kind is ReminderKind.FIXED
    assert definition.time == "06:45"


@pytest.mark.asyncio
async def test_offset_without_sunset_keeps_state(machine, store, transport, upstream):
    upstream.fail = True
    context = ConversationContext(pending_type=ReminderType.TEFILLIN)
    user = await _new_user(store, ConversationState.SELECTING_EVENT_OFFSET, context)

    user = await _say(machine, store, user.id, "1")

    assert user.current_state is ConversationState.SELECTING_EVENT_OFFSET
    assert user.context == context
    assert transport.bodies == [messages.sunset_unavailable("Jerusalem")]
    assert not store.definitions


@pytest.mark.asyncio
async def test_unknown_offset_reprompts(machine, store, transport):
    user = await _new_user(
        store, ConversationState.SELECTING_EVENT_OFFSET, ConversationContext(pending_type=ReminderType.TEFILLIN)
    )

    user = await _say(machine, store, user.id, "45")

    assert user.current_state is ConversationState.SELECTING_EVENT_OFFSET
    assert transport.bodies == [messages.OFFSET_MENU]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "choice, reminder_type",
    [("3", ReminderType.SUNSET), ("4️⃣", ReminderType.CANDLE), ("תפילה", ReminderType.PRAYER)],
)
async def test_event_reminder_asks_for_location(machine, store, transport, choice, reminder_type):
    user = await _new_user(store, ConversationState.SELECTING_REMINDER_TYPE)

    user = await _say(machine, store, user.id, choice)
    assert user.current_state is ConversationState.SELECTING_LOCATION
    assert user.context.pending_type is reminder_type
    assert transport.bodies[-1] == messages.location_prompt("Jerusalem")

    user = await _say(machine, store, user.id, "Haifa")

    assert user.current_state is ConversationState.CONFIRMED
    (definition,) = store.definitions.values()
    assert definition.kind is ReminderKind.EVENT
    assert definition.reminder_type is reminder_type
    assert definition.location == "Haifa"


@pytest.mark.asyncio
async def test_empty_location_uses_default(machine, store):
    user = await _new_user(
        store, ConversationState.SELECTING_LOCATION, ConversationContext(pending_type=ReminderType.SUNSET)
    )

    await _say(machine, store, user.id, "   ")

    (definition,) = store.definitions.values()
    assert definition.location == "Jerusalem"


@pytest.mark.asyncio
async def test_unrecognized_type_choice_reshows_menu(machine, store, transport):
    user = await _new_user(store, ConversationState.SELECTING_REMINDER_TYPE)

    user = await _say(machine, store, user.id, "banana")

    assert user.current_state is ConversationState.SELECTING_REMINDER_TYPE
    assert transport.bodies == [messages.TYPE_MENU]


@pytest.mark.asyncio
async def test_recreating_a_type_updates_in_place(machine, store):
    user = await _new_user(store, ConversationState.SELECTING_TIME, ConversationContext(pending_type=ReminderType.CUSTOM))
    await _say(machine, store, user.id, "08:00")
    first = next(iter(store.definitions.values()))
    await store.disable_all_for_user(user.id)

    await _say(machine, store, user.id, "hi")
    await _say(machine, store, user.id, "custom")
    await _say(machine, store, user.id, "21:15")

    (definition,) = store.definitions.values()
    assert definition.id == first.id
    assert definition.time == "21:15"
    assert definition.enabled


@pytest.mark.asyncio
async def test_delete_flow(machine, store, transport):
    user = await _new_user(store, ConversationState.SELECTING_REMINDER_TYPE)
    custom = await store.upsert_definition(
        ReminderDefinition(user_id=user.id, reminder_type=ReminderType.CUSTOM, kind=ReminderKind.FIXED, time="08:00")
    )
    sunset = await store.upsert_definition(
        ReminderDefinition(user_id=user.id, reminder_type=ReminderType.SUNSET, kind=ReminderKind.EVENT, location="Haifa")
    )

    user = await _say(machine, store, user.id, "6")
    assert user.current_state is ConversationState.SELECTING_DEFINITION_TO_DELETE
    assert user.context.delete_menu is DeleteMenu.AWAITING_SELECTION
    menu = messages.delete_menu([custom, sunset])
    assert transport.bodies[-1] == menu

    user = await _say(machine, store, user.id, "7")
    assert user.current_state is ConversationState.SELECTING_DEFINITION_TO_DELETE
    assert transport.bodies[-1] == menu

    user = await _say(machine, store, user.id, "2")
    assert user.current_state is ConversationState.INITIAL
    assert user.context == ConversationContext()
    assert list(store.definitions) == [custom.id]
    assert transport.bodies[-1] == messages.deleted(sunset)


@pytest.mark.asyncio
async def test_delete_with_nothing_to_delete(machine, store, transport):
    user = await _new_user(store, ConversationState.SELECTING_REMINDER_TYPE)

    user = await _say(machine, store, user.id, "מחק")

    assert user.current_state is ConversationState.INITIAL
    assert transport.bodies == [messages.NOTHING_TO_DELETE]


@pytest.mark.asyncio
async def test_delete_menu_skips_disabled_reminders(machine, store, transport):
    user = await _new_user(store, ConversationState.SELECTING_REMINDER_TYPE)
    custom = await store.upsert_definition(
        ReminderDefinition(user_id=user.id, reminder_type=ReminderType.CUSTOM, kind=ReminderKind.FIXED, time="08:00")
    )
    await store.disable_all_for_user(user.id)
    sunset = await store.upsert_definition(
        ReminderDefinition(user_id=user.id, reminder_type=ReminderType.SUNSET, kind=ReminderKind.EVENT, location="Haifa")
    )

    user = await _say(machine, store, user.id, "6")
    assert transport.bodies[-1] == messages.delete_menu([sunset])

    await _say(machine, store, user.id, "1")
    assert list(store.definitions) == [custom.id]


@pytest.mark.asyncio
async def test_delete_after_stop_has_nothing_to_delete(machine, store, transport):
    user = await _new_user(store)
    await store.upsert_definition(
        ReminderDefinition(user_id=user.id, reminder_type=ReminderType.CUSTOM, kind=ReminderKind.FIXED, time="08:00")
    )

    await _say(machine, store, user.id, "stop")
    await _say(machine, store, user.id, "hi")
    user = await _say(machine, store, user.id, "6")

    assert user.current_state is ConversationState.INITIAL
    assert transport.bodies[-1] == messages.NOTHING_TO_DELETE


@pytest.mark.asyncio
async def test_store_failure_keeps_state(machine, store, transport):
    context = ConversationContext(pending_type=ReminderType.CUSTOM)
    user = await _new_user(store, ConversationState.SELECTING_TIME, context)
    store.fail = True

    result = await machine.handle(user, "18:30")

    assert result.state is ConversationState.SELECTING_TIME
    assert result.context == context
    assert transport.bodies == [messages.ERROR]
    assert not store.definitions


@pytest.mark.asyncio
async def test_free_form_refused_falls_back_to_template(store, resolver, clock):
    transport = FakeTransport([SendResult(success=False, status="failed", error="63016: outside 24-hour window")])
    machine = ConversationStateMachine(store, resolver, Messenger(transport), clock=clock)
    user = await _new_user(store)

    await machine.handle(user, "hi")

    assert len(transport.sent) == 2
    template = transport.sent[1][1]
    assert isinstance(template, TemplateContent)
    assert template.params == [messages.TYPE_MENU]
