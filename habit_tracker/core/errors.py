"""
Exceptions raised by the habit store and the habit entity layer.
"""
from typing import Optional


class HabitStoreError(Exception):
    """Base class for all habit store errors"""
    pass


class NotFound(HabitStoreError):
    """Operation targets a habit record that does not exist in the document"""

    def __init__(self, habit_id: str, message: Optional[str] = None):
        super().__init__(message or f"Habit not found in storage: {habit_id}")
        self.habit_id = habit_id


class InvalidOperation(HabitStoreError):
    """Operation is not valid for the habit kind or the given arguments"""
    pass


class PersistenceFailure(HabitStoreError):
    """Storage backend failed to persist (or clear) the habit document"""

    def __init__(self, message: str, backend: Optional[str] = None):
        super().__init__(message)
        self.backend = backend


class CorruptDocument(HabitStoreError):
    """Stored payload could not be deserialized into a habit document"""
    pass
