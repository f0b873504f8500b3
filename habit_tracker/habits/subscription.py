"""
Reactive subscriptions over the HabitStore change stream.

Each emission rebuilds the entities from the emitted document and replaces
what the subscriber held before; entities are never patched in place.
Subscriptions must be closed when their consumer goes away.
"""
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from loguru import logger

from ..storage.change_stream import Subscription
from ..storage.habit_store import HabitStore
from .habit_entity import HabitEntity
from .models import HabitDocument
from .widget_slots import WidgetIndex, build_widget_index


class _StoreSubscription(ABC):
    """Shared lifecycle: start / close / app-active refresh"""

    label = "subscription"

    def __init__(self, store: HabitStore):
        self.store = store
        self._subscription: Optional[Subscription] = None

    @property
    def active(self) -> bool:
        return self._subscription is not None and self._subscription.active

    async def start(self):
        """
        Begin listening. The current document (if any) is delivered right away;
        otherwise the store is refreshed so a first value arrives.
        """
        if self.active:
            return self

        self._subscription = self.store.subscribe(self._handle)
        logger.debug(f"[SUBSCRIPTION] {self.label} started")

        if self.store.current is None:
            await self.store.refresh()
        return self

    def close(self) -> None:
        if self._subscription is None:
            return
        self._subscription.unsubscribe()
        self._subscription = None
        logger.debug(f"[SUBSCRIPTION] {self.label} closed")

    async def on_app_active(self) -> None:
        """Reload from storage, picking up changes made by the widget extension"""
        await self.store.refresh()

    @abstractmethod
    def _handle(self, document: HabitDocument) -> None:
        """Rebuild the subscriber view from an emitted document"""

    async def __aenter__(self):
        return await self.start()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.close()


class HabitListSubscription(_StoreSubscription):
    """
    Live, display-ordered list of every habit plus the widget slot index.

    Args:
        store: Habit store to follow
        on_change: Called with the new entity list after every emission
    """

    label = "habit list"

    def __init__(self, store: HabitStore, on_change: Callable[[List[HabitEntity]], None]):
        super().__init__(store)
        self.on_change = on_change
        self.habits: List[HabitEntity] = []
        self.widget_index: WidgetIndex = build_widget_index([])

    def _handle(self, document: HabitDocument) -> None:
        self.habits = HabitEntity.from_document(self.store, document)
        self.widget_index = build_widget_index(self.habits)
        self.on_change(self.habits)


class HabitDetailSubscription(_StoreSubscription):
    """Live view of a single habit; delivers None once the habit is gone"""

    label = "habit detail"

    def __init__(
        self,
        store: HabitStore,
        habit_id: str,
        on_change: Callable[[Optional[HabitEntity]], None],
    ):
        super().__init__(store)
        self.habit_id = habit_id
        self.on_change = on_change
        self.habit: Optional[HabitEntity] = None

    def _handle(self, document: HabitDocument) -> None:
        record = document.find(self.habit_id)
        self.habit = HabitEntity(self.store, record) if record is not None else None
        self.on_change(self.habit)
