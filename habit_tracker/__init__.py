"""
Habit Tracker - on-device habit store with widget synchronization

Packages:
- storage: storage backends (widget bridge / embedded sqlite) and the HabitStore
- habits: data model, HabitEntity, subscriptions and the widget slot index
- core: configuration, exceptions, CSV import/export
- ui: PyQt6 adapters for the subscription layer
"""

__version__ = "0.1.0"
