"""
Habit data model - pydantic schemas for the persisted habit document.

Persisted shape (JSON):
    {"habits": [{"id", "name", "type", "unit"?, "goal", "bgColor", "icon"?,
                 "quantity", "listOrder", "widgets"?: {"assignments": [...]},
                 "history": {"YYYY-MM-DD": {"quantity", "goal"}}}]}

Unknown fields on the document, on records and on history entries are kept
(extra="allow") and written back untouched, in the key order they were read.
Records that do not validate and history keys that are not dates are not
modelled, but stay in place in the written document.
"""
import json
from typing import Any, Dict, List, Optional, Tuple, Union

from loguru import logger
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    ValidationError,
    field_validator,
    model_serializer,
    model_validator,
)

from ..core.errors import CorruptDocument
from .constants import (
    CHECKBOX,
    DEFAULT_COLOR,
    HabitKind,
    HabitStatus,
    STATUS_COMPLETE,
    STATUS_NONE,
    STATUS_PARTIAL,
)
from .dates import normalize_date_key

Number = Union[int, float]


def _non_negative(value: Number) -> Number:
    return value if value >= 0 else 0


def _in_stored_order(data: Dict[str, Any], key_order: Optional[List[str]], fields) -> Dict[str, Any]:
    """Reorder serialized keys to follow the parsed payload; keys it lacked go last"""
    if not key_order:
        return data

    # Payload keys may be aliases or attribute names
    renamed: Dict[str, str] = {}
    for name, field in fields.items():
        if field.alias:
            renamed[name] = field.alias
            renamed[field.alias] = name

    ordered: Dict[str, Any] = {}
    for key in key_order:
        for candidate in (key, renamed.get(key)):
            if candidate in data and candidate not in ordered:
                ordered[candidate] = data[candidate]
    for key, value in data.items():
        ordered.setdefault(key, value)
    return ordered


class StoredModel(BaseModel):
    """Persisted model that serializes in the key order it was parsed from"""

    _key_order: Optional[List[str]] = PrivateAttr(default=None)

    @model_validator(mode="wrap")
    @classmethod
    def remember_key_order(cls, data: Any, handler):
        instance = handler(data)
        if isinstance(data, dict):
            instance._key_order = list(data)
        return instance

    @model_serializer(mode="wrap")
    def restore_key_order(self, handler):
        return _in_stored_order(handler(self), self._key_order, type(self).model_fields)


# =============================================================================
# HISTORY
# =============================================================================

class HistoryEntry(StoredModel):
    """One day's value for one habit, with the goal in effect that day"""
    model_config = ConfigDict(extra="allow")

    quantity: Number = 0
    goal: Number = 0

    @field_validator("quantity", "goal")
    @classmethod
    def clamp_negative(cls, v):
        return _non_negative(v)


def status_for_entry(entry: Optional[HistoryEntry], kind: HabitKind) -> HabitStatus:
    """
    Completion status of a single day.

    Returns:
        'none' without progress, 'complete' for checked checkboxes or reached
        goals (and for days without a goal), 'partial' otherwise
    """
    if entry is None or entry.quantity <= 0:
        return STATUS_NONE

    if kind == CHECKBOX or entry.goal <= 0:
        return STATUS_COMPLETE

    return STATUS_COMPLETE if entry.quantity >= entry.goal else STATUS_PARTIAL


def normalize_history(history: Dict[str, Any]) -> Dict[str, Any]:
    """Collapse different spellings of the same day into one YYYY-MM-DD key"""
    normalized: Dict[str, Any] = {}
    canonical_seen = set()
    for raw_key, entry in history.items():
        key = normalize_date_key(raw_key)
        if key is None:
            logger.warning(f"[HABIT MODEL] Dropping history entry with invalid date key: {raw_key!r}")
            continue

        if key == raw_key:
            canonical_seen.add(key)
            normalized[key] = entry
        elif key not in canonical_seen:
            # Later non-canonical spellings overwrite earlier ones
            normalized[key] = entry
    return normalized


# =============================================================================
# WIDGET ASSIGNMENTS
# =============================================================================

class WidgetAssignment(StoredModel):
    """A single (slot type, slot order) claim on an external display slot"""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    slot_type: str = Field(alias="type")
    slot_order: int = Field(alias="order")


class WidgetAssignments(StoredModel):
    model_config = ConfigDict(extra="allow")

    assignments: List[WidgetAssignment] = Field(default_factory=list)


# =============================================================================
# HABIT RECORD
# =============================================================================

class HabitRecord(StoredModel):
    """One tracked habit as stored in the document"""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(..., min_length=1)
    name: str
    kind: HabitKind = Field(alias="type")
    unit: Optional[str] = None
    goal: Number = 0
    color: str = Field(default=DEFAULT_COLOR, alias="bgColor")
    icon: Optional[str] = None
    current_quantity: Number = Field(default=0, alias="quantity")
    list_order: int = Field(default=0, alias="listOrder")
    widgets: Optional[WidgetAssignments] = None
    history: Dict[str, HistoryEntry] = Field(default_factory=dict)

    _history_order: Optional[List[str]] = PrivateAttr(default=None)
    _unparsed_history: Dict[str, Any] = PrivateAttr(default_factory=dict)

    @model_validator(mode="wrap")
    @classmethod
    def remember_key_order(cls, data: Any, handler):
        """Set aside history entries whose key is not a date, keeping their position"""
        history = data.get("history") if isinstance(data, dict) else None
        unparsed: Dict[str, Any] = {}
        if isinstance(history, dict):
            unparsed = {key: value for key, value in history.items() if normalize_date_key(key) is None}
            if unparsed:
                logger.warning(f"[HABIT MODEL] Keeping non-date history keys as-is: {list(unparsed)}")
                data = {**data, "history": {k: v for k, v in history.items() if k not in unparsed}}

        instance = handler(data)
        if isinstance(data, dict):
            instance._key_order = list(data)
        if isinstance(history, dict):
            instance._history_order = list(history)
            instance._unparsed_history = unparsed
        return instance

    @model_serializer(mode="wrap")
    def restore_key_order(self, handler):
        data = handler(self)
        if self._history_order is not None and isinstance(data.get("history"), dict):
            data["history"] = self._history_in_stored_order(data["history"])
        return _in_stored_order(data, self._key_order, type(self).model_fields)

    def _history_in_stored_order(self, history: Dict[str, Any]) -> Dict[str, Any]:
        ordered: Dict[str, Any] = {}
        for raw_key in self._history_order:
            if raw_key in self._unparsed_history:
                ordered[raw_key] = self._unparsed_history[raw_key]
                continue
            key = normalize_date_key(raw_key)
            if key in history and key not in ordered:
                ordered[key] = history[key]
        # Days recorded since load
        for key, value in history.items():
            ordered.setdefault(key, value)
        return ordered

    @property
    def unparsed_history(self) -> Dict[str, Any]:
        """History entries kept verbatim because their key is not a date"""
        return dict(self._unparsed_history)

    @field_validator("name")
    @classmethod
    def name_not_empty(cls, v):
        if not v or not v.strip():
            raise ValueError("Name cannot be empty")
        return v.strip()

    @field_validator("goal", "current_quantity")
    @classmethod
    def clamp_negative(cls, v):
        return _non_negative(v)

    @field_validator("history", mode="before")
    @classmethod
    def normalize_history_keys(cls, v):
        if not isinstance(v, dict):
            return v
        return normalize_history(v)

    @property
    def effective_goal(self) -> Number:
        """Goal used for new history entries (checkbox habits always 1)"""
        return 1 if self.kind == CHECKBOX else self.goal

    @property
    def assignments(self) -> List[WidgetAssignment]:
        return list(self.widgets.assignments) if self.widgets else []

    def holds_slot(self, slot_type: str, slot_order: int) -> bool:
        return any(
            a.slot_type == slot_type and a.slot_order == slot_order
            for a in self.assignments
        )

    def sync_today_cache(self, today: str) -> None:
        """Recompute cached 'today' fields from history[today]"""
        entry = self.history.get(today)
        self.current_quantity = entry.quantity if entry else 0

        # Older documents carry an isComplete flag; keep it consistent when present
        extra = self.__pydantic_extra__
        if extra is not None and "isComplete" in extra:
            extra["isComplete"] = status_for_entry(entry, self.kind) == STATUS_COMPLETE


_MODELLED = "modelled"
_RAW = "raw"


def _split_records(raw_records: List[Any]) -> Tuple[List[HabitRecord], List[Any]]:
    """
    Model the valid records of a stored habits array.

    Records that fail validation, and later records repeating an id, are not
    modelled; the returned layout keeps them verbatim at their position.
    """
    records: List[HabitRecord] = []
    layout: List[Any] = []
    seen_ids = set()
    for raw in raw_records:
        try:
            record = raw if isinstance(raw, HabitRecord) else HabitRecord.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"[HABIT MODEL] Keeping unreadable habit record as-is: {e.error_count()} error(s)")
            layout.append((_RAW, raw))
            continue

        if record.id in seen_ids:
            logger.warning(f"[HABIT MODEL] Keeping duplicate habit id as-is: {record.id}")
            if not isinstance(raw, HabitRecord):
                layout.append((_RAW, raw))
            continue

        seen_ids.add(record.id)
        records.append(record)
        layout.append((_MODELLED, record.id))
    return records, layout


# =============================================================================
# HABIT DOCUMENT
# =============================================================================

class HabitDocument(StoredModel):
    """The whole persisted unit: every habit with its history"""
    model_config = ConfigDict(extra="allow")

    habits: List[HabitRecord] = Field(default_factory=list)

    # Stored order of the habits array: (_MODELLED, id) or (_RAW, verbatim JSON)
    _layout: Optional[List[Tuple[str, Any]]] = PrivateAttr(default=None)

    @model_validator(mode="wrap")
    @classmethod
    def remember_key_order(cls, data: Any, handler):
        layout = None
        if isinstance(data, dict) and isinstance(data.get("habits"), list):
            records, layout = _split_records(data["habits"])
            data = {**data, "habits": records}

        instance = handler(data)
        if isinstance(data, dict):
            instance._key_order = list(data)
            instance._layout = layout
        return instance

    @model_serializer(mode="wrap")
    def restore_key_order(self, handler):
        data = handler(self)
        if self._layout is not None and isinstance(data.get("habits"), list):
            data["habits"] = self._habits_in_stored_order(data["habits"])
        return _in_stored_order(data, self._key_order, type(self).model_fields)

    def _habits_in_stored_order(self, dumped: List[Dict[str, Any]]) -> List[Any]:
        by_id = {record.id: item for record, item in zip(self.habits, dumped)}
        ordered: List[Any] = []
        for kind, value in self._layout:
            if kind == _MODELLED:
                item = by_id.pop(value, None)
                if item is not None:
                    ordered.append(item)
            else:
                ordered.append(value)
        # Habits created since load
        ordered.extend(by_id.values())
        return ordered

    @property
    def unparsed_records(self) -> List[Any]:
        """Stored records that are not modelled (invalid or duplicate id), verbatim"""
        return [value for kind, value in self._layout or [] if kind == _RAW]

    def discard_unparsed(self, habit_id: str) -> int:
        """Forget unmodelled records carrying this id; returns how many were dropped"""
        if not self._layout:
            return 0
        kept = [
            entry for entry in self._layout
            if not (entry[0] == _RAW and isinstance(entry[1], dict) and entry[1].get("id") == habit_id)
        ]
        removed = len(self._layout) - len(kept)
        self._layout = kept
        return removed

    # ========== Serialization ==========

    @classmethod
    def empty(cls) -> "HabitDocument":
        return cls(habits=[])

    @classmethod
    def from_json(cls, raw: Union[str, bytes]) -> "HabitDocument":
        """
        Parse a stored payload.

        Raises:
            CorruptDocument: payload is not JSON or not shaped like a document
        """
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise CorruptDocument(f"Habit document is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise CorruptDocument("Habit document must be a JSON object")

        data.setdefault("habits", [])
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise CorruptDocument(f"Habit document failed validation: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))

    # ========== Lookup ==========

    def index_of(self, habit_id: str) -> int:
        for index, record in enumerate(self.habits):
            if record.id == habit_id:
                return index
        return -1

    def find(self, habit_id: str) -> Optional[HabitRecord]:
        index = self.index_of(habit_id)
        return self.habits[index] if index != -1 else None

    def max_list_order(self) -> int:
        return max((record.list_order for record in self.habits), default=0)

    def sorted_habits(self) -> List[HabitRecord]:
        """Habits in display order; equal list_order keeps document order"""
        return sorted(self.habits, key=lambda record: record.list_order)
