"""
Pytest fixtures for habit store tests
"""
import json

import pytest

from habit_tracker.habits.dates import today_key
from habit_tracker.storage.backends import BridgeBackend, EmbeddedBackend
from habit_tracker.storage.habit_store import HabitStore
from habit_tracker.storage.widget_bridge import InMemoryWidgetBridge

STORAGE_KEY = "habitData"
STORAGE_GROUP = "group.io.ionic.tracker"


@pytest.fixture
def bridge():
    """In-memory widget bridge"""
    return InMemoryWidgetBridge()


@pytest.fixture
def store(bridge):
    """Fresh store over the in-memory widget bridge"""
    return HabitStore(BridgeBackend(bridge, STORAGE_GROUP), key=STORAGE_KEY)


@pytest.fixture(scope="function")
def embedded_backend(tmp_path):
    """Embedded sqlite backend in a temporary directory"""
    return EmbeddedBackend(tmp_path / "habit_store.db")


@pytest.fixture
def embedded_store(embedded_backend):
    """Fresh store over a temporary sqlite database"""
    return HabitStore(embedded_backend, key=STORAGE_KEY)


@pytest.fixture
def water_habit():
    """Quantity habit fields"""
    return {
        "id": "h1",
        "name": "Drink water",
        "type": "quantity",
        "unit": "glasses",
        "goal": 10,
    }


@pytest.fixture
def reading_habit():
    """Checkbox habit fields"""
    return {
        "id": "h2",
        "name": "Read",
        "type": "checkbox",
        "goal": 1,
    }


@pytest.fixture
def stored_document():
    """Raw document as the widget extension would write it"""
    return {
        "habits": [
            {
                "id": "h1",
                "name": "Drink water",
                "type": "quantity",
                "unit": "glasses",
                "goal": 8,
                "bgColor": "#b5ead7",
                "quantity": 0,
                "listOrder": 1,
                "widgets": {"assignments": [{"type": "small1", "order": 1}]},
                "history": {
                    "2024-01-01": {"quantity": 3, "goal": 8},
                    today_key(): {"quantity": 5, "goal": 8},
                },
            },
            {
                "id": "h2",
                "name": "Read",
                "type": "checkbox",
                "goal": 1,
                "bgColor": "#657c9a",
                "quantity": 0,
                "listOrder": 2,
                "history": {},
            },
        ]
    }


@pytest.fixture
def seeded_bridge(bridge, stored_document):
    """Bridge already holding stored_document"""
    bridge.external_set(STORAGE_KEY, json.dumps(stored_document), STORAGE_GROUP)
    return bridge
