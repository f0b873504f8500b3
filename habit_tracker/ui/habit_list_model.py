"""
Qt adapter for the habit list subscription.

The store runs on an asyncio loop; this QObject turns its emissions into
PyQt6 signals for views and forwards "application became active" to the
loop as a refresh request.
"""
import asyncio
from concurrent.futures import Future
from typing import List, Optional

from PyQt6.QtCore import QObject, Qt, pyqtSignal
from loguru import logger

from ..habits.habit_entity import HabitEntity
from ..habits.subscription import HabitListSubscription
from ..habits.widget_slots import WidgetIndex
from ..storage.habit_store import HabitStore


class HabitListModel(QObject):
    """
    Habit list exposed to the UI.

    Signals:
        habits_changed: New display-ordered list of HabitEntity
        widget_index_changed: New {WidgetSlot: habit_id | None} mapping
        error: Refresh failed (str)
    """

    habits_changed = pyqtSignal(list)
    widget_index_changed = pyqtSignal(object)  # {WidgetSlot: habit_id | None}
    error = pyqtSignal(str)

    def __init__(
        self,
        store: HabitStore,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        parent: Optional[QObject] = None,
    ):
        """
        Args:
            store: Habit store to follow
            loop: Event loop the store runs on (needed for refresh requests)
            parent: Qt parent
        """
        super().__init__(parent)
        self._loop = loop
        self.subscription = HabitListSubscription(store, self._on_habits)

    @property
    def habits(self) -> List[HabitEntity]:
        return self.subscription.habits

    @property
    def widget_index(self) -> WidgetIndex:
        return self.subscription.widget_index

    async def start(self) -> None:
        await self.subscription.start()

    def close(self) -> None:
        self.subscription.close()

    def _on_habits(self, habits: List[HabitEntity]) -> None:
        self.habits_changed.emit(habits)
        self.widget_index_changed.emit(dict(self.subscription.widget_index))

    # ========== App lifecycle ==========

    def attach_to_application(self, app=None) -> None:
        """Refresh whenever the application returns to the foreground"""
        from PyQt6.QtGui import QGuiApplication

        app = app or QGuiApplication.instance()
        if app is None:
            logger.warning("[HABIT LIST MODEL] No QGuiApplication, app-active refresh disabled")
            return
        app.applicationStateChanged.connect(self.on_application_state_changed)

    def on_application_state_changed(self, state: Qt.ApplicationState) -> None:
        if state == Qt.ApplicationState.ApplicationActive:
            self.request_refresh()

    def request_refresh(self) -> Optional[Future]:
        """Schedule store.refresh() on the store's loop (callable from any thread)"""
        if self._loop is None or self._loop.is_closed():
            logger.debug("[HABIT LIST MODEL] No event loop, refresh skipped")
            return None

        future = asyncio.run_coroutine_threadsafe(self.subscription.on_app_active(), self._loop)
        future.add_done_callback(self._on_refresh_done)
        return future

    def _on_refresh_done(self, future: Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error(f"[HABIT LIST MODEL] Refresh failed: {exc}")
            self.error.emit(str(exc))
