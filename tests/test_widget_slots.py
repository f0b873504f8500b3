"""
Unit tests for the widget slot catalog and assignment index
"""
from habit_tracker.habits.models import HabitDocument
from habit_tracker.habits.widget_slots import (
    WIDGET_SECTIONS,
    WidgetSlot,
    all_slots,
    build_widget_index,
    is_known_slot,
    slots_for_habit,
)


def _records(*habits):
    return HabitDocument.model_validate({"habits": list(habits)}).habits


class TestCatalog:
    """Test the static slot catalog"""

    def test_section_capacities(self):
        """Test spaces per widget surface"""
        spaces = {section.slot_type: section.spaces for section in WIDGET_SECTIONS}
        assert spaces == {
            "lock1": 1, "lock2": 1,
            "small1": 3, "small2": 3,
            "medium1": 6, "medium2": 6,
            "large1": 8, "large2": 8,
        }
        assert len(all_slots()) == 36

    def test_slot_orders_start_at_one(self):
        """Test slot bounds"""
        assert is_known_slot("small1", 1)
        assert is_known_slot("small1", 3)
        assert not is_known_slot("small1", 0)
        assert not is_known_slot("small1", 4)
        assert not is_known_slot("tiny1", 1)

    def test_slot_id(self):
        """Test display id"""
        assert WidgetSlot("medium2", 4).slot_id == "medium2-4"


class TestWidgetIndex:
    """Test the derived slot -> habit index"""

    def test_index_covers_every_slot(self):
        """Test empty index"""
        index = build_widget_index([])
        assert set(index) == set(all_slots())
        assert all(holder is None for holder in index.values())

    def test_index_maps_assignments(self):
        """Test holders and per-habit lookup"""
        index = build_widget_index(_records(
            {"id": "a", "name": "A", "type": "checkbox",
             "widgets": {"assignments": [{"type": "lock1", "order": 1}, {"type": "small2", "order": 3}]}},
            {"id": "b", "name": "B", "type": "checkbox",
             "widgets": {"assignments": [{"type": "large1", "order": 8}]}},
        ))

        assert index[WidgetSlot("lock1", 1)] == "a"
        assert index[WidgetSlot("large1", 8)] == "b"
        assert slots_for_habit(index, "a") == [WidgetSlot("lock1", 1), WidgetSlot("small2", 3)]

    def test_conflicting_claims_keep_first(self):
        """Test a corrupt document with two claimants"""
        index = build_widget_index(_records(
            {"id": "a", "name": "A", "type": "checkbox", "widgets": {"assignments": [{"type": "small1", "order": 1}]}},
            {"id": "b", "name": "B", "type": "checkbox", "widgets": {"assignments": [{"type": "small1", "order": 1}]}},
        ))

        assert index[WidgetSlot("small1", 1)] == "a"

    def test_unknown_slots_ignored(self):
        """Test assignments outside the catalog"""
        index = build_widget_index(_records(
            {"id": "a", "name": "A", "type": "checkbox", "widgets": {"assignments": [{"type": "lock1", "order": 5}]}},
        ))

        assert WidgetSlot("lock1", 5) not in index
        assert slots_for_habit(index, "a") == []
