"""
Habit Store - the single writer of the persisted habit document.

Responsibilities:
- load/save of the whole document through the active storage backend
- change notification stream (new subscribers get the current document)
- widget-surface refresh after every successful write (best effort)

There is no merge logic here: callers always submit a complete document.
"""
import asyncio
from typing import Callable, Optional, Set

from loguru import logger

from ..core.config import AppConfig, get_config
from ..core.errors import PersistenceFailure
from ..habits.models import HabitDocument
from .backends import StorageBackend, create_backend, get_default_backend
from .change_stream import ChangeStream, Subscription
from .widget_bridge import WidgetBridge


class HabitStore:
    """Owner of the habit document and its change stream"""

    def __init__(self, backend: StorageBackend, key: str = "habitData"):
        """
        Args:
            backend: Active storage backend
            key: Storage key of the habit document
        """
        self.backend = backend
        self.key = key
        self._changes: ChangeStream[HabitDocument] = ChangeStream("habit document")
        self._save_lock = asyncio.Lock()
        self._refresh_tasks: Set[asyncio.Task] = set()
        logger.info(f"[HABIT STORE] Initialized with {backend.name} backend (key={key})")

    @property
    def current(self) -> Optional[HabitDocument]:
        """Last document loaded or saved, None before the first load"""
        return self._changes.value

    # ========== Persistence ==========

    async def load(self) -> HabitDocument:
        """
        Current stored document, or the empty document if absent or corrupt.

        The caller gets its own copy; mutating it does not touch the value
        held for subscribers until it is saved.
        """
        document = await self.backend.load(self.key)
        self._changes.seed(document)
        return document.model_copy(deep=True)

    async def save(self, document: HabitDocument) -> None:
        """
        Persist a complete document, then notify subscribers and widgets.

        Raises:
            PersistenceFailure: backend did not persist the document; nothing is emitted
        """
        async with self._save_lock:
            saved = await self.backend.save(self.key, document)
            if not saved:
                logger.error(f"[HABIT STORE] Save failed on {self.backend.name} backend")
                raise PersistenceFailure("Failed to save habit data", backend=self.backend.name)

            logger.debug(f"[HABIT STORE] Saved document with {len(document.habits)} habits")
            self._changes.publish(document.model_copy(deep=True))
            self._schedule_surface_refresh()

    async def refresh(self) -> HabitDocument:
        """Reload from the backend and emit, picking up out-of-band changes"""
        document = await self.backend.load(self.key)
        self._changes.publish(document)
        logger.debug(f"[HABIT STORE] Refreshed document ({len(document.habits)} habits)")
        return document.model_copy(deep=True)

    async def clear(self) -> None:
        """
        Remove the stored document and notify subscribers with the empty document.

        Raises:
            PersistenceFailure: backend could not clear the document
        """
        async with self._save_lock:
            cleared = await self.backend.clear(self.key)
            if not cleared:
                raise PersistenceFailure("Failed to clear habit data", backend=self.backend.name)

            logger.info("[HABIT STORE] Habit data cleared")
            self._changes.publish(HabitDocument.empty())
            self._schedule_surface_refresh()

    # ========== Notifications ==========

    def subscribe(self, callback: Callable[[HabitDocument], None]) -> Subscription:
        """Receive the current document (if known) and every later change"""
        return self._changes.subscribe(callback)

    @property
    def subscriber_count(self) -> int:
        return self._changes.subscriber_count

    def _schedule_surface_refresh(self) -> None:
        task = asyncio.ensure_future(self._refresh_surfaces())
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)

    async def _refresh_surfaces(self) -> None:
        try:
            await self.backend.reload_surfaces()
        except Exception as e:
            logger.warning(f"[HABIT STORE] Widget refresh failed (ignored): {e}")

    async def drain(self) -> None:
        """Wait for in-flight widget refresh requests"""
        while True:
            pending = [task for task in self._refresh_tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending)

    async def close(self) -> None:
        await self.drain()
        await self.backend.close()


def build_habit_store(app_config: Optional[AppConfig] = None, bridge: Optional[WidgetBridge] = None) -> HabitStore:
    """Create the process-wide store for the given configuration"""
    if app_config is None and bridge is None:
        return HabitStore(get_default_backend(), key=get_config().HABIT_STORAGE_KEY)

    app_config = app_config or get_config()
    backend = create_backend(app_config, bridge=bridge)
    return HabitStore(backend, key=app_config.HABIT_STORAGE_KEY)
