"""Tests for phase lifecycle and planning payload handling."""

import pytest

from word_pilot_schemas import PhaseStatus, ResearchPhase

from services.assistant.app.phases import PhaseSessionState, greeting, parse_phase1_json, phase_name
from services.assistant.app.repositories import RESEARCH_ITEMS, ResearchItemRepository, SessionRepository
from services.assistant.app.stores import InMemoryKeyValueStore, InMemoryRecordStore, RecordStoreError
from services.assistant.app.templates import PromptTemplateStore
from tests.utils.conversation import PLAN_REPLY, PROJECT_ID, FlakyRecordStore


pytestmark = pytest.mark.anyio("asyncio")


@pytest.fixture
def anyio_backend():
    return "asyncio"


class _FailingInsertStore(InMemoryRecordStore):
    async def insert(self, collection, rows):
        if collection == RESEARCH_ITEMS:
            raise RecordStoreError("insert failed")
        return await super().insert(collection, rows)


def _state(record_store=None, kv=None) -> PhaseSessionState:
    kv = kv or InMemoryKeyValueStore()
    return PhaseSessionState(
        SessionRepository(kv),
        ResearchItemRepository(record_store or InMemoryRecordStore()),
        PromptTemplateStore(kv),
    )


def test_parse_phase1_json_from_fenced_block() -> None:
    plan = parse_phase1_json(PLAN_REPLY)
    assert plan is not None
    assert plan.book_plan.topic == "Sandwiches"
    assert plan.research_plan.research_fields == ["origin", "key facts"]
    assert plan.research_plan.sections[0].items_to_research == ["Cuban sandwich", "Po' boy"]
    assert plan.similar_works[0].how_its_different == "Broader"
    assert plan.phase2_prompt == "Research each sandwich carefully."


def test_parse_phase1_json_from_raw_text_with_trailing_braces() -> None:
    text = 'Here you go: {"bookPlan": {"topic": "A {curly} title"}, "researchPlan": {"sections": []}} {extra}'
    plan = parse_phase1_json(text)
    assert plan is not None
    assert plan.book_plan.topic == "A {curly} title"


def test_parse_phase1_json_conversational_text_returns_none() -> None:
    assert parse_phase1_json("What angle interests you most about sandwiches?") is None


def test_parse_phase1_json_requires_research_plan() -> None:
    assert parse_phase1_json('```json\n{"bookPlan": {"topic": "X"}}\n```') is None
    assert parse_phase1_json('{"bookPlan": {"topic": "X"}, "researchPlan": null}') is None


def test_parse_phase1_json_invalid_json_returns_none() -> None:
    assert parse_phase1_json('```json\n{"bookPlan": {, "researchPlan": {}}\n```') is None


def test_phase_names_and_greeting() -> None:
    assert phase_name(1) == "Phase 1: Planning"
    assert phase_name(ResearchPhase.FACT_CHECKING) == "Phase 3: Fact Checking"
    assert "What's your book topic?" in greeting(1)
    assert "How can I help you with this phase?" in greeting(2)


async def test_session_defaults_and_phase_switching() -> None:
    state = _state()

    session = await state.load(PROJECT_ID)
    assert session.current_phase == ResearchPhase.PLANNING
    assert all(phase.status == PhaseStatus.NOT_STARTED for phase in session.phases.values())

    session = await state.switch_phase(PROJECT_ID, 3)
    assert session.current_phase == ResearchPhase.FACT_CHECKING
    assert session.phase_state(3).status == PhaseStatus.IN_PROGRESS
    assert (await state.load(PROJECT_ID)).current_phase == ResearchPhase.FACT_CHECKING

    session = await state.mark_phase_complete(PROJECT_ID, 3)
    assert session.phase_state(3).status == PhaseStatus.COMPLETE
    assert session.phase_state(3).completed_at is not None


async def test_corrupt_session_snapshot_is_reinitialised() -> None:
    kv = InMemoryKeyValueStore({SessionRepository.key(PROJECT_ID): '{"currentPhase": 9}'})
    state = _state(kv=kv)

    session = await state.load(PROJECT_ID)

    assert session.current_phase == ResearchPhase.PLANNING


async def test_apply_phase1_plan_creates_items_and_completes_planning() -> None:
    record_store = InMemoryRecordStore()
    state = _state(record_store)
    plan = parse_phase1_json(PLAN_REPLY)

    outcome = await state.apply_phase1_plan(PROJECT_ID, plan)

    assert outcome.ok
    assert len(outcome.created_items) == 3
    items = await ResearchItemRepository(record_store).list_items(PROJECT_ID)
    assert [(item.section, item.name) for item in items] == [
        ("Americas", "Cuban sandwich"),
        ("Americas", "Po' boy"),
        ("Europe", "Croque monsieur"),
    ]
    assert all(item.data == {} for item in items)

    session = await state.load(PROJECT_ID)
    assert session.phase_state(1).status == PhaseStatus.COMPLETE
    assert session.phase_state(1).completed_at is not None
    assert session.book_plan.topic == "Sandwiches"
    assert session.phase_state(2).suggested_prompt == "Research each sandwich carefully."
    assert await state.research_fields(PROJECT_ID) == ["origin", "key facts"]


async def test_apply_phase1_plan_twice_does_not_duplicate_items() -> None:
    record_store = InMemoryRecordStore()
    state = _state(record_store)
    plan = parse_phase1_json(PLAN_REPLY)

    await state.apply_phase1_plan(PROJECT_ID, plan)
    outcome = await state.apply_phase1_plan(PROJECT_ID, plan)

    assert outcome.created_items == []
    assert len(await ResearchItemRepository(record_store).list_items(PROJECT_ID)) == 3


async def test_apply_phase1_plan_keeps_planning_data_when_items_fail() -> None:
    state = _state(_FailingInsertStore())
    plan = parse_phase1_json(PLAN_REPLY)

    outcome = await state.apply_phase1_plan(PROJECT_ID, plan)

    assert not outcome.ok
    assert isinstance(outcome.error, RecordStoreError)
    session = await state.load(PROJECT_ID)
    assert session.book_plan.topic == "Sandwiches"
    assert session.similar_works[0].title == "Bread"


async def test_apply_phase1_plan_keeps_planning_data_when_listing_fails() -> None:
    record_store = FlakyRecordStore()
    record_store.fail("select", RESEARCH_ITEMS)
    state = _state(record_store)

    outcome = await state.apply_phase1_plan(PROJECT_ID, parse_phase1_json(PLAN_REPLY))

    assert isinstance(outcome.error, RecordStoreError)
    assert outcome.created_items == []
    session = await state.load(PROJECT_ID)
    assert session.book_plan.topic == "Sandwiches"
    assert session.research_plan.sections[0].title == "Americas"
    assert session.phase_state(ResearchPhase.RESEARCH).suggested_prompt == "Research each sandwich carefully."
