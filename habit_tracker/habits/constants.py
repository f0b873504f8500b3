"""Shared constants for habit records"""
from typing import Literal

HabitKind = Literal["checkbox", "quantity"]

CHECKBOX: HabitKind = "checkbox"
QUANTITY: HabitKind = "quantity"

HabitStatus = Literal["complete", "partial", "none"]

STATUS_COMPLETE: HabitStatus = "complete"
STATUS_PARTIAL: HabitStatus = "partial"
STATUS_NONE: HabitStatus = "none"

PRESET_COLORS = (
    "#657c9a",  # Muted Blue
    "#228B22",  # Dark Green
    "#FA8072",  # Salmon
    "#CC0000",  # Red
    "#1B4B9E",  # Dark Blue
    "#33cca1",  # Sea Foam
    "#F4781D",  # Orange
    "#CC9933",  # Ocre Yellow
    "#663399",  # Purple
    "#8B4513",  # Brown
)

DEFAULT_COLOR = PRESET_COLORS[0]
