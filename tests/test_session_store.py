"""
Tests for the in-memory session store.

Covers:
  - get_or_create fabrication and deep copies
  - Atomic update (commit, failed mutator, id immutability)
  - Context merge (None handling, unknown keys, concurrent merges)
  - Sliding TTL and expiry
  - Restart and sweeping
  - Store factory
"""
import asyncio
import pytest

from database.store_memory import InMemorySessionStore
from models.errors import UnknownContextKeyError
from models.schemas import DialogueStep, HistoryEntry, SessionMode


# ──────────────────────────────────────────────────────────────
#  get_or_create
# ──────────────────────────────────────────────────────────────

class TestGetOrCreate:
    @pytest.mark.asyncio
    async def test_unknown_id_creates_default_session(self, store):
        session = await store.get_or_create("s1")
        assert session.id == "s1"
        assert session.step == DialogueStep.INITIAL
        assert session.mode is None
        assert session.language == "en-IN"
        assert session.context.snapshot() == {}
        assert session.history == []

    @pytest.mark.asyncio
    async def test_same_id_returns_same_session(self, store):
        await store.merge_context("s1", {"name": "Asha"})
        again = await store.get_or_create("s1")
        assert again.context.name == "Asha"
        assert store.stats()["sessions"] == 1

    @pytest.mark.asyncio
    async def test_returned_session_is_a_copy(self, store):
        session = await store.get_or_create("s1")
        session.context.name = "Mutated"
        session.step = DialogueStep.QUESTION_MODE

        fresh = await store.get_or_create("s1")
        assert fresh.context.name is None
        assert fresh.step == DialogueStep.INITIAL


# ──────────────────────────────────────────────────────────────
#  update
# ──────────────────────────────────────────────────────────────

class TestUpdate:
    @pytest.mark.asyncio
    async def test_update_commits_mutation(self, store):
        def _mutate(s):
            s.step = DialogueStep.COLLECTING_NAME
            s.mode = SessionMode.GENERATE_BUSINESS

        committed = await store.update("s1", _mutate)
        assert committed.step == DialogueStep.COLLECTING_NAME

        stored = await store.get_or_create("s1")
        assert stored.step == DialogueStep.COLLECTING_NAME
        assert stored.mode == SessionMode.GENERATE_BUSINESS

    @pytest.mark.asyncio
    async def test_failing_mutator_commits_nothing(self, store):
        await store.merge_context("s1", {"name": "Asha"})

        def _explode(s):
            s.context.name = "Half-written"
            s.step = DialogueStep.QUESTION_MODE
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await store.update("s1", _explode)

        stored = await store.get_or_create("s1")
        assert stored.context.name == "Asha"
        assert stored.step == DialogueStep.INITIAL

    @pytest.mark.asyncio
    async def test_session_id_is_immutable(self, store):
        def _rename(s):
            s.id = "other"

        with pytest.raises(ValueError):
            await store.update("s1", _rename)
        assert (await store.get_or_create("s1")).id == "s1"

    @pytest.mark.asyncio
    async def test_update_refreshes_last_activity(self, store):
        before = await store.get_or_create("s1")
        after = await store.update("s1", lambda s: None)
        assert after.last_activity >= before.last_activity

    @pytest.mark.asyncio
    async def test_concurrent_updates_are_serialized(self, store):
        async def _bump(label):
            def _append(s):
                s.history.append(HistoryEntry(kind="message", message=label))
            await store.update("s1", _append)

        await asyncio.gather(*[_bump(f"m{i}") for i in range(20)])
        stored = await store.get_or_create("s1")
        assert sorted(h.message for h in stored.history) == sorted(f"m{i}" for i in range(20))


# ──────────────────────────────────────────────────────────────
#  merge_context
# ──────────────────────────────────────────────────────────────

class TestMergeContext:
    @pytest.mark.asyncio
    async def test_merge_adds_and_overwrites(self, store):
        await store.merge_context("s1", {"name": "Asha", "location": "Pune"})
        ctx = await store.merge_context("s1", {"location": "Nashik", "budget": 50000})
        assert ctx.name == "Asha"
        assert ctx.location == "Nashik"
        assert ctx.budget == 50000

    @pytest.mark.asyncio
    async def test_none_values_do_not_erase(self, store):
        await store.merge_context("s1", {"name": "Asha"})
        ctx = await store.merge_context("s1", {"name": None, "location": "Pune"})
        assert ctx.name == "Asha"
        assert ctx.location == "Pune"

    @pytest.mark.asyncio
    async def test_unknown_key_rejected_without_partial_write(self, store):
        with pytest.raises(UnknownContextKeyError) as exc_info:
            await store.merge_context("s1", {"name": "Asha", "favourite_colour": "blue"})
        assert exc_info.value.keys == ["favourite_colour"]

        stored = await store.get_or_create("s1")
        assert stored.context.name is None

    @pytest.mark.asyncio
    async def test_concurrent_merges_on_disjoint_keys_all_survive(self, store):
        await asyncio.gather(
            store.merge_context("s1", {"name": "Asha"}),
            store.merge_context("s1", {"location": "Pune"}),
            store.merge_context("s1", {"budget": 50000}),
            store.merge_context("s1", {"interests": "cooking"}),
        )
        ctx = (await store.get_or_create("s1")).context
        assert ctx.snapshot() == {
            "name": "Asha",
            "location": "Pune",
            "budget": 50000,
            "interests": "cooking",
        }

    @pytest.mark.asyncio
    async def test_different_sessions_are_independent(self, store):
        await store.merge_context("a", {"name": "Asha"})
        await store.merge_context("b", {"name": "Meera"})
        assert (await store.get_or_create("a")).context.name == "Asha"
        assert (await store.get_or_create("b")).context.name == "Meera"


# ──────────────────────────────────────────────────────────────
#  History
# ──────────────────────────────────────────────────────────────

class TestHistory:
    @pytest.mark.asyncio
    async def test_append_history_accepts_dicts_and_models(self, store):
        await store.append_history("s1", {"kind": "message", "message": "hi", "intent": "greeting"})
        await store.append_history("s1", HistoryEntry(kind="button", button_value="ask_question"))

        history = (await store.get_or_create("s1")).history
        assert [h.kind for h in history] == ["message", "button"]
        assert history[0].intent == "greeting"
        assert history[1].button_value == "ask_question"


# ──────────────────────────────────────────────────────────────
#  TTL
# ──────────────────────────────────────────────────────────────

class TestExpiry:
    @pytest.mark.asyncio
    async def test_idle_session_expires(self, store, clock):
        await store.merge_context("s1", {"name": "Asha"})
        clock.advance(3601)

        session = await store.get_or_create("s1")
        assert session.context.name is None
        assert session.step == DialogueStep.INITIAL

    @pytest.mark.asyncio
    async def test_updates_slide_the_expiry(self, store, clock):
        await store.merge_context("s1", {"name": "Asha"})
        clock.advance(3000)
        await store.merge_context("s1", {"location": "Pune"})
        clock.advance(3000)

        session = await store.get_or_create("s1")
        assert session.context.name == "Asha"
        assert session.context.location == "Pune"

    @pytest.mark.asyncio
    async def test_update_on_expired_session_starts_fresh(self, store, clock):
        await store.merge_context("s1", {"name": "Asha", "location": "Pune"})
        clock.advance(4000)

        ctx = await store.merge_context("s1", {"budget": 10000})
        assert ctx.snapshot() == {"budget": 10000}

    @pytest.mark.asyncio
    async def test_sweep_removes_only_expired(self, store, clock):
        await store.get_or_create("old")
        clock.advance(2000)
        await store.get_or_create("new")
        clock.advance(2000)

        removed = await store.sweep_expired()
        assert removed == 1
        assert store.stats() == {"sessions": 1, "locks": 1}

    @pytest.mark.asyncio
    async def test_sweep_on_empty_store(self):
        store = InMemorySessionStore()
        assert await store.sweep_expired() == 0
        assert store.stats() == {"sessions": 0, "locks": 0}


# ──────────────────────────────────────────────────────────────
#  Restart
# ──────────────────────────────────────────────────────────────

class TestRestart:
    @pytest.mark.asyncio
    async def test_restart_clears_state_but_keeps_history(self, store):
        def _progress(s):
            s.step = DialogueStep.READY_TO_GENERATE
            s.mode = SessionMode.GENERATE_BUSINESS
            s.modal_flags.detailed_plan_mode = True
            s.modal_flags.detailed_resource_mode = True
            s.language = "hi-IN"

        await store.update("s1", _progress)
        await store.merge_context("s1", {"name": "Asha", "location": "Pune"})
        await store.append_history("s1", {"kind": "message", "message": "hi"})

        session = await store.restart("s1")
        assert session.id == "s1"
        assert session.step == DialogueStep.INITIAL
        assert session.mode is None
        assert not session.modal_flags.detailed_plan_mode
        assert not session.modal_flags.detailed_resource_mode
        assert session.context.snapshot() == {}
        assert len(session.history) == 1
        assert session.language == "hi-IN"

    @pytest.mark.asyncio
    async def test_restart_is_idempotent(self, store):
        await store.merge_context("s1", {"name": "Asha"})
        first = await store.restart("s1")
        second = await store.restart("s1")
        assert first.step == second.step == DialogueStep.INITIAL
        assert first.context == second.context
        assert first.modal_flags == second.modal_flags


# ──────────────────────────────────────────────────────────────
#  Factory
# ──────────────────────────────────────────────────────────────

class TestStoreFactory:
    def test_memory_backend(self):
        from config.settings import SessionConfig
        from database.store_factory import create_store, reset_store

        reset_store()
        try:
            store = create_store(SessionConfig(ttl_seconds=60))
            assert isinstance(store, InMemorySessionStore)
            assert create_store() is store
        finally:
            reset_store()

    def test_unknown_backend_rejected(self):
        from config.settings import SessionConfig
        from database.store_factory import create_store, reset_store

        reset_store()
        with pytest.raises(ValueError):
            create_store(SessionConfig(store_backend="redis"))
        reset_store()
