"""
Storage backends - raw load/save/clear of the single habit document.

Two interchangeable implementations:
- BridgeBackend: the widget-sharing surface (native plugin), treated as unreliable
- EmbeddedBackend: local sqlite key-value table, lazily initialized once

Backend selection is a pure function of platform capability, decided once per
process (get_default_backend).
"""
import asyncio
import sqlite3
import threading
from abc import ABC, abstractmethod
from functools import lru_cache
from pathlib import Path
from typing import Optional, Union

from loguru import logger

from ..core.config import AppConfig, get_config
from ..core.errors import CorruptDocument
from ..habits.models import HabitDocument
from .widget_bridge import SharedContainerBridge, WidgetBridge

BRIDGE = "bridge"
EMBEDDED = "embedded"

# Platforms whose widget host is reachable through the bridge plugin
BRIDGE_PLATFORMS = frozenset({"ios"})


def parse_document(raw: Optional[str], source: str) -> HabitDocument:
    """Deserialize a stored payload; absent or corrupt data becomes the empty document"""
    if not raw:
        return HabitDocument.empty()

    try:
        return HabitDocument.from_json(raw)
    except CorruptDocument as e:
        logger.error(f"[{source}] Stored habit data is corrupt, treating as empty: {e}")
        return HabitDocument.empty()


class StorageBackend(ABC):
    """Contract shared by all backends"""

    name = "backend"

    @abstractmethod
    async def save(self, key: str, document: HabitDocument) -> bool:
        """Persist the full document; False on failure"""

    @abstractmethod
    async def load(self, key: str) -> HabitDocument:
        """Stored document or the empty default; never raises"""

    @abstractmethod
    async def clear(self, key: str) -> bool:
        """Remove the stored document; False on failure"""

    async def reload_surfaces(self) -> None:
        """Ask external presentation surfaces to redraw (no-op by default)"""

    async def close(self) -> None:
        """Release resources held by the backend"""


# =============================================================================
# BRIDGE BACKEND
# =============================================================================

class BridgeBackend(StorageBackend):
    """Backend delegating to the native widget bridge under (key, group)"""

    name = "WIDGET BRIDGE"

    def __init__(self, bridge: WidgetBridge, group: str):
        self.bridge = bridge
        self.group = group

    async def save(self, key: str, document: HabitDocument) -> bool:
        try:
            await self.bridge.set_item(key, document.to_json(), self.group)
            logger.debug(f"[WIDGET BRIDGE] Saved {len(document.habits)} habits to {self.group}/{key}")
            return True
        except Exception as e:
            logger.error(f"[WIDGET BRIDGE] Failed to save {self.group}/{key}: {e}")
            return False

    async def load(self, key: str) -> HabitDocument:
        try:
            raw = await self.bridge.get_item(key, self.group)
        except Exception as e:
            logger.error(f"[WIDGET BRIDGE] Failed to load {self.group}/{key}: {e}")
            return HabitDocument.empty()

        if raw is None:
            logger.debug(f"[WIDGET BRIDGE] No data stored under {self.group}/{key}")
        return parse_document(raw, self.name)

    async def clear(self, key: str) -> bool:
        try:
            await self.bridge.remove_item(key, self.group)
            logger.info(f"[WIDGET BRIDGE] Cleared {self.group}/{key}")
            return True
        except Exception as e:
            logger.error(f"[WIDGET BRIDGE] Failed to clear {self.group}/{key}: {e}")
            return False

    async def reload_surfaces(self) -> None:
        await self.bridge.reload_all_timelines()


# =============================================================================
# EMBEDDED BACKEND
# =============================================================================

class EmbeddedBackend(StorageBackend):
    """
    Local key-value store on sqlite.

    The connection is opened lazily by the first call; concurrent first
    callers await the same initialization task instead of opening a second
    handle.
    """

    name = "EMBEDDED DB"

    def __init__(self, db_path: Union[Path, str]):
        """
        Args:
            db_path: Path to the sqlite file, or ":memory:"
        """
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._init_task: Optional[asyncio.Task] = None
        self._lock = threading.Lock()
        self.init_count = 0

    async def initialize(self) -> None:
        """Open the database once; safe to call concurrently"""
        if self._conn is not None:
            return

        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._open())

        task = self._init_task
        try:
            await asyncio.shield(task)
        except Exception:
            # Failed initialization is not cached; the next caller retries
            if self._init_task is task:
                self._init_task = None
            raise

    async def _open(self) -> None:
        self.init_count += 1
        self._conn = await asyncio.to_thread(self._connect)
        logger.info(f"[EMBEDDED DB] Initialized key-value store at {self.db_path}")

    def _connect(self) -> sqlite3.Connection:
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        conn.commit()
        return conn

    async def _run(self, func, *args):
        await self.initialize()
        return await asyncio.to_thread(self._locked, func, *args)

    def _locked(self, func, *args):
        with self._lock:
            return func(self._conn, *args)

    # ========== SQL ==========

    @staticmethod
    def _get(conn: sqlite3.Connection, key: str) -> Optional[str]:
        row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    @staticmethod
    def _set(conn: sqlite3.Connection, key: str, value: str) -> None:
        conn.execute("""
            INSERT INTO kv_store (key, value)
            VALUES (?, ?)
            ON CONFLICT(key)
            DO UPDATE SET
                value = excluded.value,
                updated_at = CURRENT_TIMESTAMP
        """, (key, value))
        conn.commit()

    @staticmethod
    def _delete(conn: sqlite3.Connection, key: str) -> None:
        conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        conn.commit()

    # ========== Contract ==========

    async def save(self, key: str, document: HabitDocument) -> bool:
        try:
            await self._run(self._set, key, document.to_json())
            logger.debug(f"[EMBEDDED DB] Saved {len(document.habits)} habits under {key}")
            return True
        except Exception as e:
            logger.error(f"[EMBEDDED DB] Failed to save {key}: {e}")
            return False

    async def load(self, key: str) -> HabitDocument:
        try:
            raw = await self._run(self._get, key)
        except Exception as e:
            logger.error(f"[EMBEDDED DB] Failed to load {key}: {e}")
            return HabitDocument.empty()
        return parse_document(raw, self.name)

    async def clear(self, key: str) -> bool:
        try:
            await self._run(self._delete, key)
            logger.info(f"[EMBEDDED DB] Cleared {key}")
            return True
        except Exception as e:
            logger.error(f"[EMBEDDED DB] Failed to clear {key}: {e}")
            return False

    async def close(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        self._init_task = None
        await asyncio.to_thread(conn.close)
        logger.info(f"[EMBEDDED DB] Connection closed ({self.db_path})")


# =============================================================================
# SELECTION
# =============================================================================

def detect_bridge_capability(platform_name: Optional[str] = None) -> bool:
    """True when the platform (default: configured platform) hosts widgets reachable through the bridge"""
    if platform_name is None:
        platform_name = get_config().PLATFORM
    return platform_name.lower() in BRIDGE_PLATFORMS


def select_backend_kind(platform_name: Optional[str] = None, forced: Optional[str] = None) -> str:
    """Pick 'bridge' or 'embedded'; an explicit override wins over detection"""
    if forced:
        return forced
    return BRIDGE if detect_bridge_capability(platform_name) else EMBEDDED


def create_backend(app_config: AppConfig, bridge: Optional[WidgetBridge] = None) -> StorageBackend:
    """
    Build the backend chosen for this configuration.

    Args:
        app_config: Configuration (platform, override, paths)
        bridge: Native bridge to use; defaults to the on-disk shared container
    """
    kind = select_backend_kind(app_config.PLATFORM, app_config.HABIT_STORAGE_BACKEND)
    logger.info(f"[STORAGE] Using {kind} backend (platform={app_config.PLATFORM})")

    if kind == BRIDGE:
        return BridgeBackend(
            bridge or SharedContainerBridge(app_config.SHARED_CONTAINER_DIR),
            app_config.HABIT_STORAGE_GROUP,
        )
    return EmbeddedBackend(app_config.EMBEDDED_DB_PATH)


@lru_cache(maxsize=1)
def get_default_backend() -> StorageBackend:
    """Process-wide backend, decided once from the global configuration"""
    return create_backend(get_config())
