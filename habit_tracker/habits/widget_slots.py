"""
Widget slot catalog and the derived slot -> habit assignment index.

The index holds no state of its own: it is rebuilt from the widget
assignments stored on each habit record whenever the habit list changes.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, NamedTuple, Optional

from loguru import logger

from .models import HabitRecord


@dataclass(frozen=True)
class WidgetSection:
    """Describe one widget surface and how many habits it can show."""

    title: str
    slot_type: str
    spaces: int


WIDGET_SECTIONS = (
    WidgetSection("Lock Screen 1", "lock1", 1),
    WidgetSection("Lock Screen 2", "lock2", 1),
    WidgetSection("Small Widget 1", "small1", 3),
    WidgetSection("Small Widget 2", "small2", 3),
    WidgetSection("Medium Widget 1", "medium1", 6),
    WidgetSection("Medium Widget 2", "medium2", 6),
    WidgetSection("Large Widget 1", "large1", 8),
    WidgetSection("Large Widget 2", "large2", 8),
)

_SECTIONS_BY_TYPE = {section.slot_type: section for section in WIDGET_SECTIONS}


class WidgetSlot(NamedTuple):
    slot_type: str
    slot_order: int

    @property
    def slot_id(self) -> str:
        return f"{self.slot_type}-{self.slot_order}"


WidgetIndex = Dict[WidgetSlot, Optional[str]]


def all_slots() -> List[WidgetSlot]:
    """Every slot of every section, slot orders starting at 1"""
    return [
        WidgetSlot(section.slot_type, order)
        for section in WIDGET_SECTIONS
        for order in range(1, section.spaces + 1)
    ]


def is_known_slot(slot_type: str, slot_order: int) -> bool:
    section = _SECTIONS_BY_TYPE.get(slot_type)
    return section is not None and 1 <= slot_order <= section.spaces


def build_widget_index(habits: Iterable[HabitRecord]) -> WidgetIndex:
    """
    Map every catalog slot to the id of the habit claiming it.

    Args:
        habits: Habit records or entities (anything with `id` and
            `assignments`), in display order

    Returns:
        Dict with an entry for each slot; unclaimed slots map to None
    """
    index: WidgetIndex = {slot: None for slot in all_slots()}

    for habit in habits:
        for assignment in habit.assignments:
            slot = WidgetSlot(assignment.slot_type, assignment.slot_order)
            if slot not in index:
                logger.debug(f"[WIDGET INDEX] Ignoring assignment to unknown slot {slot.slot_id} ({habit.id})")
                continue

            holder = index[slot]
            if holder is not None and holder != habit.id:
                logger.warning(
                    f"[WIDGET INDEX] Slot {slot.slot_id} claimed by both {holder} and {habit.id}; keeping {holder}"
                )
                continue
            index[slot] = habit.id

    return index


def slots_for_habit(index: WidgetIndex, habit_id: str) -> List[WidgetSlot]:
    return [slot for slot, holder in index.items() if holder == habit_id]
