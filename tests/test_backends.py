"""
Unit tests for storage backends and backend selection
Tests: bridge failures, embedded lazy init, shared container layout, selection
"""
import asyncio
import json

from habit_tracker.core.config import AppConfig
from habit_tracker.habits.models import HabitDocument
from habit_tracker.storage.backends import (
    BridgeBackend,
    EmbeddedBackend,
    create_backend,
    detect_bridge_capability,
    select_backend_kind,
)
from habit_tracker.storage.widget_bridge import SharedContainerBridge

KEY = "habitData"
GROUP = "group.io.ionic.tracker"


def _document(stored_document):
    return HabitDocument.model_validate(stored_document)


class TestBridgeBackend:
    """Test the widget bridge backend"""

    def test_save_and_load(self, bridge, stored_document):
        """Test document stored under (key, group)"""
        backend = BridgeBackend(bridge, GROUP)

        async def scenario():
            assert await backend.save(KEY, _document(stored_document))
            return await backend.load(KEY)

        loaded = asyncio.run(scenario())

        assert (KEY, GROUP) in bridge.items
        assert [record.id for record in loaded.habits] == ["h1", "h2"]

    def test_missing_key_loads_empty(self, bridge):
        """Test nothing stored yet"""
        loaded = asyncio.run(BridgeBackend(bridge, GROUP).load(KEY))
        assert loaded.habits == []

    def test_malformed_json_loads_empty(self, bridge):
        """Test corrupt payload is treated as empty without raising"""
        bridge.external_set(KEY, "{not json", GROUP)
        loaded = asyncio.run(BridgeBackend(bridge, GROUP).load(KEY))
        assert loaded.habits == []

    def test_bridge_failures_return_defaults(self, bridge, stored_document):
        """Test every bridge error is converted to the default result"""
        bridge.fail_on.update({"get_item", "set_item", "remove_item"})
        backend = BridgeBackend(bridge, GROUP)

        async def scenario():
            return (
                await backend.save(KEY, _document(stored_document)),
                await backend.load(KEY),
                await backend.clear(KEY),
            )

        saved, loaded, cleared = asyncio.run(scenario())

        assert saved is False
        assert loaded.habits == []
        assert cleared is False

    def test_reload_surfaces_delegates(self, bridge):
        """Test timeline reload reaches the bridge"""
        asyncio.run(BridgeBackend(bridge, GROUP).reload_surfaces())
        assert bridge.reload_count == 1


class TestEmbeddedBackend:
    """Test the sqlite key-value backend"""

    def test_save_load_clear(self, embedded_backend, stored_document):
        """Test basic persistence cycle"""
        async def scenario():
            assert await embedded_backend.save(KEY, _document(stored_document))
            loaded = await embedded_backend.load(KEY)
            assert await embedded_backend.clear(KEY)
            cleared = await embedded_backend.load(KEY)
            await embedded_backend.close()
            return loaded, cleared

        loaded, cleared = asyncio.run(scenario())

        assert len(loaded.habits) == 2
        assert cleared.habits == []

    def test_upsert_keeps_single_row(self, embedded_backend, stored_document):
        """Test saving twice overwrites the same key"""
        document = _document(stored_document)

        async def scenario():
            await embedded_backend.save(KEY, document)
            document.habits.pop()
            await embedded_backend.save(KEY, document)
            loaded = await embedded_backend.load(KEY)
            await embedded_backend.close()
            return loaded

        assert [record.id for record in asyncio.run(scenario()).habits] == ["h1"]

    def test_concurrent_first_calls_initialize_once(self, embedded_backend):
        """Test concurrent first callers share one initialization"""
        async def scenario():
            await asyncio.gather(*(embedded_backend.load(KEY) for _ in range(5)))
            await embedded_backend.close()

        asyncio.run(scenario())

        assert embedded_backend.init_count == 1

    def test_failed_initialization_is_retried(self, tmp_path):
        """Test a failed open is not cached"""
        # A directory cannot be opened as a database file
        backend = EmbeddedBackend(tmp_path)

        async def scenario():
            saved = await backend.save(KEY, HabitDocument.empty())
            loaded = await backend.load(KEY)
            return saved, loaded

        saved, loaded = asyncio.run(scenario())

        assert saved is False
        assert loaded.habits == []
        assert backend.init_count == 2

    def test_data_survives_reopen(self, tmp_path, stored_document):
        """Test document is persisted on disk"""
        db_path = tmp_path / "habit_store.db"

        async def scenario():
            first = EmbeddedBackend(db_path)
            await first.save(KEY, _document(stored_document))
            await first.close()

            second = EmbeddedBackend(db_path)
            loaded = await second.load(KEY)
            await second.close()
            return loaded

        assert len(asyncio.run(scenario()).habits) == 2


class TestSharedContainerBridge:
    """Test the on-disk app-group container"""

    def test_item_layout(self, tmp_path):
        """Test items live at <root>/<group>/<key>.json"""
        bridge = SharedContainerBridge(tmp_path)

        async def scenario():
            await bridge.set_item(KEY, '{"habits":[]}', GROUP)
            value = await bridge.get_item(KEY, GROUP)
            await bridge.remove_item(KEY, GROUP)
            missing = await bridge.get_item(KEY, GROUP)
            await bridge.remove_item(KEY, GROUP)
            return value, missing

        value, missing = asyncio.run(scenario())

        assert value == '{"habits":[]}'
        assert missing is None
        assert not (tmp_path / GROUP / f"{KEY}.json").exists()

    def test_reload_writes_stamp(self, tmp_path):
        """Test timeline reload leaves a stamp for the widget renderer"""
        asyncio.run(SharedContainerBridge(tmp_path).reload_all_timelines())
        assert (tmp_path / SharedContainerBridge.STAMP_FILE).exists()

    def test_bridge_backend_over_container(self, tmp_path, stored_document):
        """Test the stored file is the serialized document"""
        backend = BridgeBackend(SharedContainerBridge(tmp_path), GROUP)
        asyncio.run(backend.save(KEY, _document(stored_document)))

        data = json.loads((tmp_path / GROUP / f"{KEY}.json").read_text(encoding="utf-8"))
        assert [habit["id"] for habit in data["habits"]] == ["h1", "h2"]


class TestBackendSelection:
    """Test backend selection policy"""

    def test_capability_detection(self):
        """Test only platforms with a widget host use the bridge"""
        assert detect_bridge_capability("ios")
        assert not detect_bridge_capability("linux")
        assert not detect_bridge_capability("web")

    def test_select_backend_kind(self):
        """Test detection and explicit override"""
        assert select_backend_kind("ios") == "bridge"
        assert select_backend_kind("linux") == "embedded"
        assert select_backend_kind("linux", forced="bridge") == "bridge"
        assert select_backend_kind("ios", forced="embedded") == "embedded"

    def test_create_backend_from_config(self, tmp_path):
        """Test configuration drives the backend instance"""
        embedded = create_backend(AppConfig(PLATFORM="linux", DATA_DIR=tmp_path))
        bridged = create_backend(AppConfig(PLATFORM="ios", DATA_DIR=tmp_path))

        assert isinstance(embedded, EmbeddedBackend)
        assert embedded.db_path == tmp_path / "habit_store.db"
        assert isinstance(bridged, BridgeBackend)
        assert bridged.group == "group.io.ionic.tracker"
        assert bridged.bridge.root == tmp_path / "groups"
