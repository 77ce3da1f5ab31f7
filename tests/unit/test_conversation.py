"""End-to-end tests for the conversation manager over in-memory stores."""

import pytest

from word_pilot_providers import ProviderAuthError, ProviderError, ProviderRateLimitError
from word_pilot_schemas import MessageRole, PhaseStatus, SUMMARY_PREFIX

from services.assistant.app.conversation import ConversationState, EventKind, PreviewKind
from services.assistant.app.errors import (
    INVALID_CREDENTIAL_MESSAGE,
    RATE_LIMIT_MESSAGE,
    ConversationBusyError,
    NoPendingPreviewError,
)
from services.assistant.app.phases import parse_phase1_json
from services.assistant.app.prompts import (
    DEFAULT_PHASE_PROMPTS,
    EDIT_SAVE_FAILED_NOTICE,
    MESSAGE_SAVE_FAILED_NOTICE,
    RESEARCH_SAVE_FAILED_NOTICE,
    STORE_UNAVAILABLE_NOTICE,
)
from services.assistant.app.repositories import CHAT_MESSAGES, RESEARCH_ITEMS
from services.assistant.app.stores import InMemoryRecordStore
from services.assistant.app.usage import SUBSCRIPTIONS, SubscriptionUsageTracker
from tests.utils.conversation import (
    PLAN_REPLY,
    PROJECT_ID,
    RESEARCH_OUTPUT,
    FlakyKeyValueStore,
    FlakyRecordStore,
    build_harness,
    seed_history,
)


pytestmark = pytest.mark.anyio("asyncio")


@pytest.fixture
def anyio_backend():
    return "asyncio"


async def _with_plan(harness, phase: int) -> None:
    await harness.service.phases.apply_phase1_plan(PROJECT_ID, parse_phase1_json(PLAN_REPLY))
    await harness.manager.switch_phase(phase)


async def _persisted(harness, phase: int):
    return await harness.service.messages.load(PROJECT_ID, phase)


async def test_load_greets_without_persisting() -> None:
    harness = await build_harness()

    assert len(harness.manager.messages) == 1
    greeting = harness.manager.messages[0]
    assert greeting.transient
    assert "What's your book topic?" in greeting.content
    assert await _persisted(harness, 1) == []


async def test_chat_streams_and_persists_both_turns() -> None:
    harness = await build_harness(["Tell me more about the sandwiches you love."])
    snapshots = []
    harness.manager.subscribe(
        lambda event: snapshots.append((event.kind, event.message.content if event.message else None))
    )

    await harness.manager.submit("  I want to write about sandwiches  ")

    assert harness.manager.state == ConversationState.IDLE
    persisted = await _persisted(harness, 1)
    assert [(message.role, message.content) for message in persisted] == [
        (MessageRole.USER, "I want to write about sandwiches"),
        (MessageRole.ASSISTANT, "Tell me more about the sandwiches you love."),
    ]
    updates = [content for kind, content in snapshots if kind == EventKind.MESSAGE_UPDATED]
    assert len(updates) > 1
    assert all(later.startswith(earlier) for earlier, later in zip(updates, updates[1:]))
    assert updates[-1] == "Tell me more about the sandwiches you love."

    request = harness.provider.requests[0]
    assert request.system_prompt == DEFAULT_PHASE_PROMPTS[1]
    assert request.messages[-1].content == "I want to write about sandwiches"


async def test_chat_summarizes_long_history_before_the_turn() -> None:
    harness = await build_harness(["Earlier they chose a topic.", "Sounds good."])
    await seed_history(harness.service, 1, 6)

    await harness.manager.submit("Next question")

    persisted = await _persisted(harness, 1)
    assert len(persisted) == 4
    assert persisted[0].is_summary
    assert persisted[0].content == f"{SUMMARY_PREFIX}Earlier they chose a topic.]"
    assert persisted[1].content == "message 5"
    chat_request = harness.provider.requests[1]
    assert len(chat_request.messages) == 3
    assert chat_request.messages[0].content.startswith(SUMMARY_PREFIX)
    assert any(event.kind == EventKind.HISTORY_RELOADED for event in harness.events)


async def test_planning_payload_builds_research_structure() -> None:
    harness = await build_harness([PLAN_REPLY])

    await harness.manager.submit("I'm ready to start researching")

    items = await harness.service.items.list_items(PROJECT_ID)
    assert len(items) == 3
    session = await harness.service.phases.load(PROJECT_ID)
    assert session.phase_state(1).status == PhaseStatus.COMPLETE
    assert any(event.kind == EventKind.PLAN_APPLIED for event in harness.events)
    notice = harness.manager.messages[-1]
    assert notice.transient
    assert notice.content.startswith("Research structure created! 3 items")
    assert len(await _persisted(harness, 1)) == 2


async def test_research_approve_saves_only_the_named_item() -> None:
    harness = await build_harness([RESEARCH_OUTPUT])
    await _with_plan(harness, 2)

    await harness.manager.submit("Research: Cuban sandwich")

    preview = harness.manager.preview
    assert preview is not None
    assert preview.kind is PreviewKind.RESEARCH
    assert list(preview.data) == ["origin", "key_facts", "sources"]
    prompt = harness.provider.requests[0].messages[0].content
    assert "Research 'Cuban sandwich' from section 'Americas'" in prompt
    assert "ORIGIN, KEY_FACTS" in prompt
    assert harness.provider.requests[0].system_prompt == DEFAULT_PHASE_PROMPTS[2]
    assert await _persisted(harness, 2) == []
    assert all(message.content != "Research: Cuban sandwich" for message in harness.manager.messages)

    with pytest.raises(ConversationBusyError):
        await harness.manager.submit("Research: Po' boy")

    item = await harness.manager.approve_preview()

    assert item is not None
    assert harness.manager.preview is None
    items = {item.name: item for item in await harness.service.items.list_items(PROJECT_ID)}
    assert items["Cuban sandwich"].data["origin"] == "Created by Cuban immigrants in Tampa and Key West."
    assert items["Cuban sandwich"].data["sources"][1]["type"] == "website"
    assert items["Po' boy"].data == {}
    assert items["Croque monsieur"].data == {}
    assert harness.manager.messages[-1].content.startswith('Research for "Cuban sandwich" has been saved')
    assert await _persisted(harness, 2) == []


async def test_research_regenerate_then_cancel_persists_nothing() -> None:
    harness = await build_harness([RESEARCH_OUTPUT, "ORIGIN:\nMiami\n"])
    await _with_plan(harness, 2)

    await harness.manager.submit("research Cuban sandwich")
    await harness.manager.regenerate_preview()

    assert harness.manager.preview.data == {"origin": "Miami"}
    assert harness.provider.requests[1].messages[0].content == harness.provider.requests[0].messages[0].content
    item = await harness.service.items.find_by_name(PROJECT_ID, "Cuban sandwich")
    assert item.data == {}

    harness.manager.cancel_preview()

    assert harness.manager.preview is None
    assert any(event.kind == EventKind.PREVIEW_CLOSED for event in harness.events)
    item = await harness.service.items.find_by_name(PROJECT_ID, "Cuban sandwich")
    assert item.data == {}
    with pytest.raises(NoPendingPreviewError):
        await harness.manager.approve_preview()


async def test_regenerate_service_error_keeps_preview_open() -> None:
    harness = await build_harness([RESEARCH_OUTPUT, ProviderRateLimitError("slow down", status_code=429)])
    await _with_plan(harness, 2)

    await harness.manager.submit("research Cuban sandwich")
    await harness.manager.regenerate_preview()

    assert harness.manager.preview is not None
    assert harness.manager.messages[-1].content == RATE_LIMIT_MESSAGE


async def test_research_unknown_item_offers_to_add_it() -> None:
    harness = await build_harness()
    await _with_plan(harness, 2)

    await harness.manager.submit("Research: Reuben")

    assert harness.provider.requests == []
    notice = harness.manager.messages[-1]
    assert notice.transient
    assert notice.content.startswith('I couldn\'t find "Reuben" in your research plan. Would you like me')


async def test_research_parse_failure_is_soft() -> None:
    harness = await build_harness(["Sorry, I can only chat about that."])
    await _with_plan(harness, 2)

    await harness.manager.submit("research Po' boy")

    assert harness.manager.preview is None
    assert harness.manager.messages[-1].content.startswith("I had trouble parsing the research output")
    item = await harness.service.items.find_by_name(PROJECT_ID, "Po' boy")
    assert item.data == {}


async def test_research_commands_are_chat_outside_phase_two() -> None:
    harness = await build_harness(["Happy to help plan that."])

    await harness.manager.submit("Research: Cuban sandwich")

    assert harness.manager.preview is None
    assert len(await _persisted(harness, 1)) == 2


async def test_edit_flow_replaces_data_wholesale() -> None:
    harness = await build_harness(["ORIGIN:\nKey West\n\nKEY_FACTS:\nPressed"])
    await _with_plan(harness, 3)
    await harness.service.items.save_research(
        PROJECT_ID, "Cuban sandwich", {"origin": "Tampa", "key_facts": "Pressed", "sources": []}
    )

    await harness.manager.submit("Fix the origin in Cuban sandwich")

    preview = harness.manager.preview
    assert preview.kind is PreviewKind.EDIT
    assert preview.field_name == "origin"
    assert preview.original_data["origin"] == "Tampa"
    prompt = harness.provider.requests[0].messages[0].content
    assert '"origin": "Tampa"' in prompt
    assert "Focus on the field: origin" in prompt

    await harness.manager.approve_preview()

    item = await harness.service.items.find_by_name(PROJECT_ID, "Cuban sandwich")
    assert item.data == {"origin": "Key West", "key_facts": "Pressed"}
    assert harness.manager.messages[-1].content.startswith('Research for "Cuban sandwich" has been updated')


async def test_edit_unknown_item() -> None:
    harness = await build_harness()
    await _with_plan(harness, 3)

    await harness.manager.submit("edit Reuben")

    assert harness.manager.messages[-1].content == 'I couldn\'t find "Reuben" in your research plan.'


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (ProviderRateLimitError("too many", status_code=429), RATE_LIMIT_MESSAGE),
        (ProviderAuthError("bad key", status_code=401), INVALID_CREDENTIAL_MESSAGE),
        (ProviderError("network down"), "Failed to connect to the research assistant: network down"),
    ],
)
async def test_chat_service_errors_are_classified(error, expected) -> None:
    harness = await build_harness([error])

    await harness.manager.submit("Hello")

    assert any(event.kind == EventKind.MESSAGE_REMOVED for event in harness.events)
    assert all(message.content for message in harness.manager.messages)
    notice = harness.manager.messages[-1]
    assert notice.transient
    assert notice.content == expected
    persisted = await _persisted(harness, 1)
    assert [message.role for message in persisted] == [MessageRole.USER]
    assert harness.manager.state == ConversationState.IDLE


async def _quota_harness(replies, *, tokens_limit: int, active: bool = True):
    store = InMemoryRecordStore()
    await store.insert(
        SUBSCRIPTIONS,
        [{"user_id": "user-1", "active": active, "tokens_used": 0, "tokens_limit": tokens_limit}],
    )
    return await build_harness(
        replies, usage=SubscriptionUsageTracker(store), user_id="user-1", record_store=store
    )


async def test_usage_is_charged_for_chat() -> None:
    harness = await _quota_harness(["Sure."], tokens_limit=1_000_000)

    await harness.manager.submit("Hello")

    rows = await harness.service.record_store.select(SUBSCRIPTIONS, {"user_id": "user-1"})
    assert rows[0]["tokens_used"] > 0
    assert len(await _persisted(harness, 1)) == 2


async def test_quota_exceeded_aborts_chat_turn() -> None:
    harness = await _quota_harness(["A long and thoughtful reply."], tokens_limit=10)

    await harness.manager.submit("Hello")

    notice = harness.manager.messages[-1]
    assert notice.content.startswith("Token limit exceeded. You have used 0 of 10 tokens.")
    streamed = harness.manager.messages[-2]
    assert streamed.content == "A long and thoughtful reply."
    assert streamed.transient
    persisted = await _persisted(harness, 1)
    assert [message.role for message in persisted] == [MessageRole.USER]


async def test_quota_exceeded_prevents_research_preview() -> None:
    harness = await _quota_harness([RESEARCH_OUTPUT], tokens_limit=10)
    await _with_plan(harness, 2)

    await harness.manager.submit("research Cuban sandwich")

    assert harness.manager.preview is None
    assert harness.manager.messages[-1].content.startswith("Token limit exceeded")


async def test_inactive_subscription_message() -> None:
    harness = await _quota_harness(["Hi"], tokens_limit=1_000, active=False)

    await harness.manager.submit("Hello")

    assert harness.manager.messages[-1].content == (
        "Your subscription is not active. Please check your payment status."
    )


async def test_switch_phase_scopes_history_and_clear() -> None:
    harness = await build_harness(["Planning reply."])
    await harness.manager.submit("Planning question")

    await harness.manager.switch_phase(3)
    assert [message.transient for message in harness.manager.messages] == [True]
    assert "Phase 3: Fact Checking" in harness.manager.messages[0].content

    await harness.manager.switch_phase(1)
    assert [message.content for message in harness.manager.messages] == [
        "Planning question",
        "Planning reply.",
    ]

    removed = await harness.manager.clear_history()
    assert removed == 2
    assert await _persisted(harness, 1) == []
    assert harness.manager.messages[0].transient


async def test_history_read_failure_shows_notice_and_skips_completion() -> None:
    store = FlakyRecordStore()
    harness = await build_harness(["Never sent."], record_store=store)
    store.fail("select", CHAT_MESSAGES)

    await harness.manager.submit("hello")

    assert harness.manager.state == ConversationState.IDLE
    user_message, notice = harness.manager.messages[-2:]
    assert user_message.content == "hello"
    assert user_message.transient
    assert notice.transient
    assert notice.content == STORE_UNAVAILABLE_NOTICE
    assert harness.provider.requests == []
    assert await _persisted(harness, 1) == []


async def test_prompt_template_read_failure_in_chat() -> None:
    kv = FlakyKeyValueStore()
    harness = await build_harness(["Never sent."], kv_store=kv)
    kv.failing = True

    await harness.manager.submit("hello")

    assert harness.manager.messages[-2].transient
    assert harness.manager.messages[-1].content == STORE_UNAVAILABLE_NOTICE
    assert harness.provider.requests == []
    kv.failing = False
    assert await _persisted(harness, 1) == []


async def test_research_lookup_failure_shows_notice() -> None:
    store = FlakyRecordStore()
    harness = await build_harness([RESEARCH_OUTPUT], record_store=store)
    await _with_plan(harness, 2)
    store.fail("select", RESEARCH_ITEMS)

    await harness.manager.submit("Research: Cuban sandwich")

    assert harness.manager.preview is None
    assert harness.manager.messages[-1].content == STORE_UNAVAILABLE_NOTICE
    assert harness.provider.requests == []


async def test_edit_preview_template_failure_shows_notice() -> None:
    kv = FlakyKeyValueStore()
    harness = await build_harness(["ORIGIN:\nKey West\n"], kv_store=kv)
    await _with_plan(harness, 3)
    kv.failing = True

    await harness.manager.submit("Edit: Cuban sandwich")

    assert harness.manager.preview is None
    assert harness.manager.state == ConversationState.IDLE
    assert harness.manager.messages[-1].content == STORE_UNAVAILABLE_NOTICE


async def test_summary_cleanup_failure_keeps_history_consistent() -> None:
    store = FlakyRecordStore()
    harness = await build_harness(["A summary.", "Reply."], record_store=store)
    await seed_history(harness.service, 1, 6)
    store.fail("delete", CHAT_MESSAGES)

    await harness.manager.submit("Next question")

    persisted = await _persisted(harness, 1)
    assert len(persisted) == 8
    assert not any(message.is_summary for message in persisted)
    assert [message.content for message in persisted[-2:]] == ["Next question", "Reply."]


async def test_user_message_save_failure_is_transient() -> None:
    store = FlakyRecordStore()
    harness = await build_harness(["Never sent."], record_store=store)
    store.fail("insert", CHAT_MESSAGES)

    await harness.manager.submit("hello")

    user_message, notice = harness.manager.messages[-2:]
    assert user_message.transient
    assert notice.content == MESSAGE_SAVE_FAILED_NOTICE
    assert harness.provider.requests == []
    assert await _persisted(harness, 1) == []


async def test_assistant_message_save_failure_keeps_user_turn() -> None:
    store = FlakyRecordStore()
    harness = await build_harness(["Here is my answer."], record_store=store)
    store.fail("insert", CHAT_MESSAGES, after=1)

    await harness.manager.submit("hello")

    reply, notice = harness.manager.messages[-2:]
    assert reply.content == "Here is my answer."
    assert reply.transient
    assert notice.content == MESSAGE_SAVE_FAILED_NOTICE
    persisted = await _persisted(harness, 1)
    assert [(message.role, message.content) for message in persisted] == [(MessageRole.USER, "hello")]


async def test_research_approve_save_failure() -> None:
    store = FlakyRecordStore()
    harness = await build_harness([RESEARCH_OUTPUT], record_store=store)
    await _with_plan(harness, 2)
    await harness.manager.submit("Research: Cuban sandwich")
    store.fail("update", RESEARCH_ITEMS)

    item = await harness.manager.approve_preview()

    assert item is None
    assert harness.manager.preview is None
    assert harness.manager.messages[-1].content == RESEARCH_SAVE_FAILED_NOTICE
    saved = await harness.service.items.find_by_name(PROJECT_ID, "Cuban sandwich")
    assert saved.data == {}


async def test_edit_approve_save_failure_leaves_data() -> None:
    store = FlakyRecordStore()
    harness = await build_harness(["ORIGIN:\nKey West\n"], record_store=store)
    await _with_plan(harness, 3)
    await harness.service.items.save_research(PROJECT_ID, "Cuban sandwich", {"origin": "Tampa"})
    await harness.manager.submit("Update Cuban sandwich")
    store.fail("update", RESEARCH_ITEMS)

    assert await harness.manager.approve_preview() is None

    assert harness.manager.messages[-1].content == EDIT_SAVE_FAILED_NOTICE
    saved = await harness.service.items.find_by_name(PROJECT_ID, "Cuban sandwich")
    assert saved.data == {"origin": "Tampa"}


async def test_edit_focus_survives_missing_field() -> None:
    harness = await build_harness(["ORIGIN:\nKey West\n"])
    await _with_plan(harness, 3)

    await harness.manager.submit("Fix the serving temperature in Cuban sandwich")

    prompt = harness.provider.requests[0].messages[0].content
    assert harness.manager.preview.field_name == "serving_temperature"
    assert "Focus on the field: serving temperature." in prompt
