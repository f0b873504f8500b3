"""
Unit tests for the HabitStore
Tests: load/save notifications, failure handling, widget refresh, refresh/clear
"""
import asyncio
import json

import pytest

from habit_tracker.core.config import AppConfig
from habit_tracker.core.errors import PersistenceFailure
from habit_tracker.habits.models import HabitDocument
from habit_tracker.storage.backends import EmbeddedBackend
from habit_tracker.storage.habit_store import build_habit_store


class TestLoadSave:
    """Test load and save"""

    def test_load_from_empty_storage(self, store):
        """Test absent document loads as empty"""
        document = asyncio.run(store.load())
        assert document.habits == []
        assert store.current is not None

    def test_load_malformed_json_returns_empty(self, store, bridge):
        """Test corrupt stored data never raises"""
        bridge.external_set(store.key, "{not json", store.backend.group)
        document = asyncio.run(store.load())
        assert document.to_dict() == {"habits": []}

    def test_load_does_not_notify(self, store, seeded_bridge):
        """Test load seeds the stream; only later subscribers see it"""
        received = []
        store.subscribe(received.append)

        asyncio.run(store.load())
        assert received == []

        late = []
        store.subscribe(late.append)
        assert len(late) == 1
        assert len(late[0].habits) == 2

    def test_save_notifies_subscribers(self, store, stored_document):
        """Test successful save emits the saved document"""
        received = []
        store.subscribe(received.append)
        document = HabitDocument.model_validate(stored_document)

        async def scenario():
            await store.save(document)
            await store.drain()

        asyncio.run(scenario())

        assert received == [document]
        assert store.current == document
        assert store.current is not document

    def test_save_of_loaded_document_rewrites_stored_bytes(self, store, bridge):
        """Test saving an unchanged document writes back exactly what was stored"""
        raw = json.dumps({"habits": [
            {
                "history": {"2024-01-01": {"goal": 8, "quantity": 3}, "notes": {"text": "busy week"}},
                "id": "h1", "listOrder": 1, "name": "Water", "type": "quantity", "unit": "glasses",
                "goal": 8, "bgColor": "#b5ead7", "quantity": 0,
            },
            {"id": "h3", "type": "timer", "name": "Plank", "history": {"2024-01-01": {"seconds": 60}}},
        ]}, separators=(",", ":"))
        bridge.external_set(store.key, raw, store.backend.group)

        async def scenario():
            await store.save(await store.load())
            await store.drain()

        asyncio.run(scenario())

        assert bridge.items[(store.key, store.backend.group)] == raw

    def test_saved_document_is_detached_from_caller(self, store, seeded_bridge):
        """Test changing a document after saving it reaches no subscriber"""
        received = []

        async def scenario():
            document = await store.load()
            await store.save(document)
            document.habits[0].name = "Unsaved"
            store.subscribe(received.append)
            await store.drain()

        asyncio.run(scenario())

        assert received[0].habits[0].name == "Drink water"
        assert store.current.habits[0].name == "Drink water"

    def test_loaded_copy_is_isolated(self, store, seeded_bridge):
        """Test mutating a loaded document does not change the current value"""
        async def scenario():
            document = await store.load()
            document.habits.clear()
            return store.current

        current = asyncio.run(scenario())
        assert len(current.habits) == 2


class TestFailures:
    """Test failure handling"""

    def test_failed_save_raises_and_emits_nothing(self, store, bridge, stored_document):
        """Test writer sees the failure; subscribers see nothing"""
        received = []

        async def scenario():
            await store.load()
            store.subscribe(received.append)
            bridge.fail_on.add("set_item")
            with pytest.raises(PersistenceFailure):
                await store.save(HabitDocument.model_validate(stored_document))

        asyncio.run(scenario())

        assert len(received) == 1  # replay of the loaded empty document
        assert received[0].habits == []
        assert store.current.habits == []
        assert bridge.reload_count == 0

    def test_widget_refresh_failure_is_swallowed(self, store, bridge, stored_document):
        """Test save succeeds when the widget reload fails"""
        bridge.fail_on.add("reload_all_timelines")

        async def scenario():
            await store.save(HabitDocument.model_validate(stored_document))
            await store.drain()

        asyncio.run(scenario())

        assert (store.key, store.backend.group) in bridge.items

    def test_widget_refresh_after_save(self, store, bridge, stored_document):
        """Test every successful save asks widgets to reload"""
        async def scenario():
            await store.save(HabitDocument.model_validate(stored_document))
            await store.save(HabitDocument.model_validate(stored_document))
            await store.drain()

        asyncio.run(scenario())

        assert bridge.reload_count == 2


class TestRefreshClear:
    """Test refresh and clear"""

    def test_refresh_picks_up_external_change(self, store, bridge, stored_document):
        """Test out-of-band widget writes reach subscribers on refresh"""
        received = []

        async def scenario():
            await store.load()
            store.subscribe(received.append)
            bridge.external_set(store.key, json.dumps(stored_document), store.backend.group)
            await store.refresh()

        asyncio.run(scenario())

        assert [len(document.habits) for document in received] == [0, 2]

    def test_clear_emits_empty_document(self, store, seeded_bridge):
        """Test clear removes the data and notifies"""
        received = []

        async def scenario():
            await store.load()
            store.subscribe(received.append)
            await store.clear()
            await store.drain()
            return await store.load()

        reloaded = asyncio.run(scenario())

        assert received[-1].habits == []
        assert reloaded.habits == []

    def test_clear_failure_raises(self, store, bridge):
        """Test failed clear surfaces to the caller"""
        bridge.fail_on.add("remove_item")
        with pytest.raises(PersistenceFailure):
            asyncio.run(store.clear())


class TestBuildStore:
    """Test store construction from configuration"""

    def test_build_embedded_store(self, tmp_path):
        """Test configuration selects the embedded backend and storage key"""
        app_config = AppConfig(PLATFORM="linux", DATA_DIR=tmp_path, HABIT_STORAGE_KEY="customKey")
        store = build_habit_store(app_config)

        assert isinstance(store.backend, EmbeddedBackend)
        assert store.key == "customKey"
