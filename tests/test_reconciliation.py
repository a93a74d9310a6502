"""Tests for the processing reconciliation loop."""
import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from docuploader.orchestrator.reconciliation import (
    ProcessingReconciler,
    ReconcilerState,
    STATUS_ENDPOINT,
    TRIGGER_ENDPOINT,
)
from docuploader.services.processing_set import ProcessingSetRepository
from docuploader.services.state_store import MemoryStore


def _response(body):
    response = MagicMock()
    response.json.return_value = body
    return response


class SpyStore(MemoryStore):
    def __init__(self, initial=None):
        super().__init__(initial)
        self.writes = 0
        self.clears = 0

    def set(self, key, value):
        self.writes += 1
        super().set(key, value)

    def clear(self, key):
        self.clears += 1
        super().clear(key)


@pytest.fixture
def store():
    return SpyStore()


@pytest.fixture
def api():
    client = MagicMock()
    client.post = AsyncMock(return_value=_response({}))
    return client


def _reconciler(api, store, interval=60.0):
    return ProcessingReconciler(api, ProcessingSetRepository(store, "alice"), interval=interval)


def _persisted(store):
    raw = store.get("processing_docs:alice")
    return None if raw is None else set(json.loads(raw))


async def _seed(reconciler, store, docnumbers):
    store.set("processing_docs:alice", json.dumps(sorted(docnumbers)))
    await reconciler.start()


class TestPollOnce:
    @pytest.mark.asyncio
    async def test_shrinks_and_persists(self, api, store):
        reconciler = _reconciler(api, store)
        await _seed(reconciler, store, {1, 2, 3})
        api.post.return_value = _response({"processing": [2]})

        await reconciler.poll_once()

        api.post.assert_awaited_with(STATUS_ENDPOINT, json={"docnumbers": [1, 2, 3]})
        assert reconciler.processing == {2}
        assert _persisted(store) == {2}
        assert reconciler.state == ReconcilerState.POLLING
        await reconciler.stop()

    @pytest.mark.asyncio
    async def test_empty_response_completes_once(self, api, store):
        reconciler = _reconciler(api, store)
        completions = []
        reconciler.on_batch_complete(completions.append)
        reconciler.context = "recent"
        await _seed(reconciler, store, {1, 2, 3})
        api.post.return_value = _response({"processing": []})

        await reconciler.poll_once()
        await reconciler.poll_once()

        assert reconciler.processing == frozenset()
        assert _persisted(store) is None
        assert reconciler.state == ReconcilerState.IDLE
        assert completions == ["recent"]
        # Nothing left to ask about
        assert api.post.await_count == 1

    @pytest.mark.asyncio
    async def test_identical_response_is_a_no_op(self, api, store):
        reconciler = _reconciler(api, store)
        changes = []
        reconciler.on_change(changes.append)
        await _seed(reconciler, store, {1, 2})
        writes_before = store.writes
        changes.clear()
        api.post.return_value = _response({"processing": [2, 1]})

        await reconciler.poll_once()

        assert store.writes == writes_before
        assert changes == []
        assert reconciler.processing == {1, 2}
        await reconciler.stop()

    @pytest.mark.asyncio
    async def test_failed_tick_changes_nothing(self, api, store):
        reconciler = _reconciler(api, store)
        await _seed(reconciler, store, {4, 5})
        api.post.side_effect = httpx.ConnectError("offline")

        await reconciler.poll_once()

        assert reconciler.processing == {4, 5}
        assert _persisted(store) == {4, 5}
        assert reconciler.state == ReconcilerState.POLLING
        await reconciler.stop()

    @pytest.mark.asyncio
    async def test_malformed_body_changes_nothing(self, api, store):
        reconciler = _reconciler(api, store)
        await _seed(reconciler, store, {4})
        api.post.return_value = _response({"processing": ["not-a-number"]})

        await reconciler.poll_once()

        assert reconciler.processing == {4}
        await reconciler.stop()

    @pytest.mark.asyncio
    async def test_overlapping_tick_is_skipped(self, api, store):
        reconciler = _reconciler(api, store)
        await _seed(reconciler, store, {1})
        release = asyncio.Event()

        async def slow_post(endpoint, json):
            await release.wait()
            return _response({"processing": [1]})

        api.post.side_effect = slow_post
        first = asyncio.create_task(reconciler.poll_once())
        await asyncio.sleep(0)
        await reconciler.poll_once()
        release.set()
        await first

        assert api.post.await_count == 1
        await reconciler.stop()

    @pytest.mark.asyncio
    async def test_documents_submitted_mid_tick_are_kept(self, api, store):
        reconciler = _reconciler(api, store)
        await _seed(reconciler, store, {1, 2})
        release = asyncio.Event()

        async def post(endpoint, json):
            if endpoint == STATUS_ENDPOINT:
                await release.wait()
                return _response({"processing": []})
            return _response({})

        api.post.side_effect = post
        tick = asyncio.create_task(reconciler.poll_once())
        await asyncio.sleep(0)
        await reconciler.submit([9])
        release.set()
        await tick

        assert reconciler.processing == {9}
        assert _persisted(store) == {9}
        await reconciler.stop()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_rehydrates_and_arms(self, api, store):
        reconciler = _reconciler(api, store)
        await _seed(reconciler, store, {5, 7})

        assert reconciler.processing == {5, 7}
        assert reconciler.state == ReconcilerState.POLLING
        await reconciler.stop()

    @pytest.mark.asyncio
    async def test_start_with_nothing_stays_idle(self, api, store):
        reconciler = _reconciler(api, store)
        await reconciler.start()
        assert reconciler.state == ReconcilerState.IDLE

    @pytest.mark.asyncio
    async def test_start_discards_garbage(self, api, store):
        store.set("processing_docs:alice", "{not json")
        reconciler = _reconciler(api, store)
        await reconciler.start()
        assert reconciler.processing == frozenset()
        assert store.get("processing_docs:alice") is None

    @pytest.mark.asyncio
    async def test_stop_keeps_persisted_set_and_rearm_restarts(self, api, store):
        reconciler = _reconciler(api, store)
        await _seed(reconciler, store, {5, 7})

        await reconciler.stop()
        assert reconciler.state == ReconcilerState.IDLE
        assert _persisted(store) == {5, 7}

        await reconciler.rearm()
        assert reconciler.state == ReconcilerState.POLLING
        await reconciler.stop()

    @pytest.mark.asyncio
    async def test_timer_polls_until_done(self, api, store):
        reconciler = _reconciler(api, store, interval=0.01)
        completions = []
        reconciler.on_batch_complete(completions.append)
        api.post.side_effect = [
            _response({"processing": [5, 7]}),
            _response({"processing": [7]}),
            _response({"processing": []}),
        ]
        await _seed(reconciler, store, {5, 7})

        await asyncio.wait_for(reconciler.wait(), timeout=2)

        assert api.post.await_count == 3
        assert completions == [None]
        assert reconciler.state == ReconcilerState.IDLE
        assert _persisted(store) is None

    @pytest.mark.asyncio
    async def test_timer_survives_failed_ticks(self, api, store):
        reconciler = _reconciler(api, store, interval=0.01)
        api.post.side_effect = [
            httpx.ConnectError("offline"),
            _response({"processing": []}),
        ]
        await _seed(reconciler, store, {3})

        await asyncio.wait_for(reconciler.wait(), timeout=2)

        assert api.post.await_count == 2
        assert reconciler.processing == frozenset()


class TestSubmit:
    @pytest.mark.asyncio
    async def test_submit_adds_persists_and_triggers(self, api, store):
        reconciler = _reconciler(api, store)

        ok = await reconciler.submit([10, 11, 0], context="folders")

        assert ok is True
        api.post.assert_awaited_once_with(TRIGGER_ENDPOINT, json={"docnumbers": [10, 11]})
        assert reconciler.processing == {10, 11}
        assert _persisted(store) == {10, 11}
        assert reconciler.context == "folders"
        assert reconciler.state == ReconcilerState.POLLING
        await reconciler.stop()

    @pytest.mark.asyncio
    async def test_submit_merges_with_existing(self, api, store):
        reconciler = _reconciler(api, store)
        await _seed(reconciler, store, {1})

        await reconciler.submit([1, 2])

        assert reconciler.processing == {1, 2}
        await reconciler.stop()

    @pytest.mark.asyncio
    async def test_trigger_failure_rolls_back(self, api, store):
        reconciler = _reconciler(api, store)
        await _seed(reconciler, store, {1})
        api.post.side_effect = httpx.ConnectError("offline")

        ok = await reconciler.submit([2, 3])

        assert ok is False
        assert reconciler.processing == {1}
        assert _persisted(store) == {1}
        await reconciler.stop()

    @pytest.mark.asyncio
    async def test_trigger_failure_on_empty_set_disarms(self, api, store):
        reconciler = _reconciler(api, store)
        api.post.side_effect = httpx.ConnectError("offline")

        ok = await reconciler.submit([2])

        assert ok is False
        assert reconciler.processing == frozenset()
        assert _persisted(store) is None
        assert reconciler.state == ReconcilerState.IDLE

    @pytest.mark.asyncio
    async def test_submit_nothing(self, api, store):
        reconciler = _reconciler(api, store)
        assert await reconciler.submit([]) is False
        api.post.assert_not_awaited()


class FailingStore(MemoryStore):
    """A state dir that has gone read-only."""

    def set(self, key, value):
        raise OSError("Read-only file system")

    def clear(self, key):
        raise OSError("Read-only file system")


class TestResilience:
    @pytest.mark.asyncio
    async def test_completion_listener_can_submit_next_batch(self, api, store):
        reconciler = _reconciler(api, store)
        reconciler.on_change(lambda docnumbers: None)

        async def chain(context):
            await reconciler.submit([2])

        reconciler.on_batch_complete(chain)
        await _seed(reconciler, store, {1})
        api.post.return_value = _response({"processing": []})

        await asyncio.wait_for(reconciler.poll_once(), timeout=1)

        assert reconciler.processing == {2}
        assert _persisted(store) == {2}
        assert reconciler.state == ReconcilerState.POLLING
        await reconciler.stop()

    @pytest.mark.asyncio
    async def test_rearm_from_completion_leaves_one_loop(self, api, store):
        reconciler = _reconciler(api, store, interval=0.01)
        chained = []

        async def chain(context):
            if not chained:
                chained.append(context)
                await reconciler.submit([2])

        reconciler.on_batch_complete(chain)
        api.post.return_value = _response({"processing": []})
        await _seed(reconciler, store, {1})

        await asyncio.wait_for(reconciler.wait(), timeout=2)
        await asyncio.wait_for(reconciler.wait(), timeout=2)

        assert reconciler.processing == frozenset()
        assert reconciler.state == ReconcilerState.IDLE
        # status {1}, trigger {2}, status {2}
        assert api.post.await_count == 3

    @pytest.mark.asyncio
    async def test_persistence_failure_keeps_polling(self, api):
        store = FailingStore({"processing_docs:alice": "[1, 2]"})
        reconciler = _reconciler(api, store)
        await reconciler.start()
        api.post.return_value = _response({"processing": [2]})

        await reconciler.poll_once()

        assert reconciler.processing == {2}
        assert reconciler.state == ReconcilerState.POLLING
        await reconciler.stop()

    @pytest.mark.asyncio
    async def test_timer_drains_despite_persistence_failure(self, api):
        store = FailingStore({"processing_docs:alice": "[1, 2]"})
        reconciler = _reconciler(api, store, interval=0.01)
        completions = []
        reconciler.on_batch_complete(completions.append)
        api.post.side_effect = [
            _response({"processing": [2]}),
            _response({"processing": []}),
        ]
        await reconciler.start()

        await asyncio.wait_for(reconciler.wait(), timeout=2)

        assert api.post.await_count == 2
        assert completions == [None]
        assert reconciler.processing == frozenset()
