"""
Habit Entity - the only object through which callers mutate habits.

Every mutating operation is a single read-modify-write over the full document:
load from the HabitStore, locate the record, apply the change plus invariant
repair, save the whole document, then refresh this projection. Nothing awaits
between computing the new document and submitting it.
"""
import uuid
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from loguru import logger
from pydantic import ValidationError

from ..core.errors import InvalidOperation, NotFound
from ..storage.habit_store import HabitStore
from .constants import CHECKBOX, PRESET_COLORS, QUANTITY, HabitKind, HabitStatus, STATUS_COMPLETE
from .dates import DateLike, to_date_key, today_key, trailing_date_keys
from .models import (
    HabitDocument,
    HabitRecord,
    HistoryEntry,
    Number,
    WidgetAssignment,
    WidgetAssignments,
    normalize_history,
    status_for_entry,
)
from .widget_slots import WidgetSlot, is_known_slot

# Persisted JSON keys -> attribute names
_FIELD_ALIASES = {
    "type": "kind",
    "bgColor": "color",
    "quantity": "current_quantity",
    "listOrder": "list_order",
}

# Fields an existing record accepts through create()/edit()
_EDITABLE_FIELDS = ("name", "unit", "goal", "color", "icon")

HabitInput = Union[HabitRecord, Mapping[str, Any]]


def _input_fields(data: HabitInput) -> Dict[str, Any]:
    """Explicitly supplied fields of a create/edit request, keyed by attribute name"""
    if isinstance(data, HabitRecord):
        fields = data.model_dump(exclude_unset=True)
        fields.update(data.__pydantic_extra__ or {})
        return fields
    return {_FIELD_ALIASES.get(key, key): value for key, value in data.items()}


def _validate_editable(fields: Mapping[str, Any]) -> None:
    if "name" in fields and (not isinstance(fields["name"], str) or not fields["name"].strip()):
        raise InvalidOperation("Habit name cannot be empty")

    if "goal" in fields:
        goal = fields["goal"]
        if isinstance(goal, bool) or not isinstance(goal, (int, float)) or goal < 0:
            raise InvalidOperation(f"Goal must be a non-negative number, got {goal!r}")

    if "color" in fields and fields["color"] not in PRESET_COLORS:
        raise InvalidOperation(f"Unknown habit color: {fields['color']!r}")


def _vacate_slot(document: HabitDocument, slot_type: str, slot_order: int) -> List[str]:
    """Remove a slot from every habit holding it; returns ids of previous holders"""
    previous = []
    for record in document.habits:
        if record.widgets is None or not record.holds_slot(slot_type, slot_order):
            continue
        record.widgets.assignments = [
            a for a in record.widgets.assignments
            if not (a.slot_type == slot_type and a.slot_order == slot_order)
        ]
        previous.append(record.id)
    return previous


def _claim_slot(document: HabitDocument, record: HabitRecord, slot_type: str, slot_order: int) -> List[str]:
    previous = _vacate_slot(document, slot_type, slot_order)
    if record.widgets is None:
        record.widgets = WidgetAssignments()
    record.widgets.assignments.append(WidgetAssignment(slot_type=slot_type, slot_order=slot_order))
    return previous


def _apply_goal_change(record: HabitRecord, new_goal: Number, today: str, retroactive: bool) -> None:
    """Cascade a goal change into history: today's entry only, or every entry when retroactive"""
    if record.kind == CHECKBOX or new_goal == record.goal:
        return

    if retroactive:
        for key, entry in list(record.history.items()):
            record.history[key] = entry.model_copy(update={"goal": new_goal})
        logger.info(f"[HABIT ENTITY] Goal of {record.id} rewritten in {len(record.history)} history entries")
    elif today in record.history:
        record.history[today] = record.history[today].model_copy(update={"goal": new_goal})


class HabitEntity:
    """In-memory projection of one habit record bound to a HabitStore"""

    def __init__(self, store: HabitStore, record: HabitRecord):
        self._store = store
        self._record = record

    def __repr__(self) -> str:
        return f"<HabitEntity id={self.id!r} name={self.name!r} kind={self.kind} order={self.list_order}>"

    # =========================================================================
    # READ-ONLY PROJECTION
    # =========================================================================

    @property
    def record(self) -> HabitRecord:
        """Detached copy of the underlying record"""
        return self._record.model_copy(deep=True)

    @property
    def id(self) -> str:
        return self._record.id

    @property
    def name(self) -> str:
        return self._record.name

    @property
    def kind(self) -> HabitKind:
        return self._record.kind

    @property
    def unit(self) -> Optional[str]:
        return self._record.unit

    @property
    def goal(self) -> Number:
        return self._record.effective_goal

    @property
    def color(self) -> str:
        return self._record.color

    @property
    def icon(self) -> Optional[str]:
        return self._record.icon

    @property
    def list_order(self) -> int:
        return self._record.list_order

    @property
    def current_quantity(self) -> Number:
        return self._record.current_quantity

    @property
    def history(self) -> Dict[str, HistoryEntry]:
        return dict(self._record.history)

    @property
    def assignments(self) -> List[WidgetAssignment]:
        return self._record.assignments

    @property
    def widget_slots(self) -> List[WidgetSlot]:
        return [WidgetSlot(a.slot_type, a.slot_order) for a in self._record.assignments]

    def entry_for(self, date: Optional[DateLike] = None) -> Optional[HistoryEntry]:
        return self._record.history.get(to_date_key(date))

    def quantity_for(self, date: Optional[DateLike] = None) -> Number:
        entry = self.entry_for(date)
        return entry.quantity if entry else 0

    def status_for(self, date: Optional[DateLike] = None) -> HabitStatus:
        return status_for_entry(self.entry_for(date), self.kind)

    @property
    def is_complete(self) -> bool:
        return self.status_for() == STATUS_COMPLETE

    def history_range(self, days: int, end: Optional[DateLike] = None) -> List[Tuple[str, Number, Number]]:
        """
        (date, quantity, goal) for each of the last `days` days, oldest first.

        Days without an entry report quantity 0 and the habit's current goal.
        """
        result = []
        for key in trailing_date_keys(days, end):
            entry = self._record.history.get(key)
            if entry:
                result.append((key, entry.quantity, entry.goal))
            else:
                result.append((key, 0, self.goal))
        return result

    # =========================================================================
    # READ-MODIFY-WRITE
    # =========================================================================

    async def _update(self, mutate: Callable[[HabitDocument, HabitRecord], None]) -> HabitRecord:
        document = await self._store.load()
        record = document.find(self.id)
        if record is None:
            raise NotFound(self.id)

        mutate(document, record)
        record.sync_today_cache(today_key())

        await self._store.save(document)
        self._record = record
        return record

    def _require_kind(self, kind: HabitKind, operation: str) -> None:
        if self.kind != kind:
            raise InvalidOperation(f"{operation} is not valid for {self.kind} habit {self.id}")

    async def reload(self) -> "HabitEntity":
        """Refresh this projection from the stored document"""
        document = await self._store.load()
        record = document.find(self.id)
        if record is None:
            raise NotFound(self.id)
        self._record = record
        return self

    async def increment(self, delta: Number = 1, date: Optional[DateLike] = None) -> None:
        """Add `delta` to the day's quantity, clamped at zero"""
        self._require_kind(QUANTITY, "increment")
        key = to_date_key(date)

        def mutate(document: HabitDocument, record: HabitRecord) -> None:
            entry = record.history.get(key)
            if entry is None:
                record.history[key] = HistoryEntry(quantity=max(0, delta), goal=record.effective_goal)
            else:
                record.history[key] = entry.model_copy(update={"quantity": max(0, entry.quantity + delta)})

        await self._update(mutate)
        logger.debug(f"[HABIT ENTITY] {self.id} {key}: {delta:+} -> {self.quantity_for(key)}")

    async def set_checked(self, checked: bool, date: Optional[DateLike] = None) -> None:
        self._require_kind(CHECKBOX, "set_checked")
        key = to_date_key(date)

        def mutate(document: HabitDocument, record: HabitRecord) -> None:
            entry = record.history.get(key)
            values = {"quantity": 1 if checked else 0, "goal": 1}
            record.history[key] = entry.model_copy(update=values) if entry else HistoryEntry(**values)

        await self._update(mutate)
        logger.debug(f"[HABIT ENTITY] {self.id} {key}: checked={checked}")

    async def set_value(self, quantity: Number, date: Optional[DateLike] = None, goal: Optional[Number] = None) -> None:
        """
        Set the day's quantity (clamped at zero).

        Args:
            quantity: New value for the day
            date: Day to edit (default today)
            goal: Goal for that day; when omitted the day's recorded goal is
                kept, falling back to the habit's current goal
        """
        self._require_kind(QUANTITY, "set_value")
        if goal is not None:
            _validate_editable({"goal": goal})
        key = to_date_key(date)

        def mutate(document: HabitDocument, record: HabitRecord) -> None:
            entry = record.history.get(key)
            day_goal = goal
            if day_goal is None:
                day_goal = entry.goal if entry else record.effective_goal
            values = {"quantity": max(0, quantity), "goal": day_goal}
            record.history[key] = entry.model_copy(update=values) if entry else HistoryEntry(**values)

        await self._update(mutate)
        logger.debug(f"[HABIT ENTITY] {self.id} {key}: value={self.quantity_for(key)}")

    async def reorder(self, new_order: int) -> None:
        """Rewrite this habit's list order (use update_list_order for bulk moves)"""

        def mutate(document: HabitDocument, record: HabitRecord) -> None:
            record.list_order = int(new_order)

        await self._update(mutate)

    async def assign_to_widget_slot(self, slot_type: str, slot_order: int) -> None:
        """Show this habit in a widget slot, taking the slot from any previous holder"""
        if not is_known_slot(slot_type, slot_order):
            raise InvalidOperation(f"Unknown widget slot: {slot_type}-{slot_order}")

        previous: List[str] = []

        def mutate(document: HabitDocument, record: HabitRecord) -> None:
            previous.extend(_claim_slot(document, record, slot_type, slot_order))

        await self._update(mutate)

        displaced = [habit_id for habit_id in previous if habit_id != self.id]
        if displaced:
            logger.info(f"[HABIT ENTITY] Slot {slot_type}-{slot_order} moved from {displaced[0]} to {self.id}")
        else:
            logger.info(f"[HABIT ENTITY] Slot {slot_type}-{slot_order} assigned to {self.id}")

    async def vacate_widget_slot(self, slot_type: str, slot_order: int) -> None:
        def mutate(document: HabitDocument, record: HabitRecord) -> None:
            if record.widgets is not None:
                record.widgets.assignments = [
                    a for a in record.widgets.assignments
                    if not (a.slot_type == slot_type and a.slot_order == slot_order)
                ]

        await self._update(mutate)
        logger.info(f"[HABIT ENTITY] Slot {slot_type}-{slot_order} vacated by {self.id}")

    async def edit(self, retroactive_goal: bool = False, **changes: Any) -> None:
        """
        Update display fields (name, unit, goal, color, icon).

        A goal change applies to today's history entry; past days keep the goal
        they were recorded with unless `retroactive_goal` is set.
        """
        unknown = set(changes) - set(_EDITABLE_FIELDS)
        if unknown:
            raise InvalidOperation(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
        _validate_editable(changes)
        today = today_key()

        def mutate(document: HabitDocument, record: HabitRecord) -> None:
            HabitEntity._merge_into(record, changes, today, retroactive_goal)

        await self._update(mutate)

    async def delete(self) -> None:
        await HabitEntity.delete_habit(self._store, self.id)

    # =========================================================================
    # COLLECTION OPERATIONS
    # =========================================================================

    @staticmethod
    def from_document(store: HabitStore, document: HabitDocument) -> List["HabitEntity"]:
        """Entities in display order (list_order, ties kept in document order)"""
        return [HabitEntity(store, record) for record in document.sorted_habits()]

    @staticmethod
    async def load_all(store: HabitStore) -> List["HabitEntity"]:
        document = await store.load()
        return HabitEntity.from_document(store, document)

    @staticmethod
    async def get(store: HabitStore, habit_id: str) -> "HabitEntity":
        document = await store.load()
        record = document.find(habit_id)
        if record is None:
            raise NotFound(habit_id)
        return HabitEntity(store, record)

    @staticmethod
    def _merge_into(record: HabitRecord, fields: Mapping[str, Any], today: str, retroactive_goal: bool) -> None:
        if "kind" in fields and fields["kind"] != record.kind:
            raise InvalidOperation(f"Habit type cannot change after creation ({record.id})")

        if "goal" in fields:
            _apply_goal_change(record, fields["goal"], today, retroactive_goal)

        for name in _EDITABLE_FIELDS:
            if name in fields:
                value = fields[name].strip() if name == "name" else fields[name]
                setattr(record, name, value)

    @staticmethod
    def _new_record(document: HabitDocument, fields: Dict[str, Any]) -> HabitRecord:
        fields = dict(fields)
        fields["id"] = fields.get("id") or str(uuid.uuid4())
        if fields.get("list_order") is None:
            fields["list_order"] = document.max_list_order() + 1
        claims = fields.pop("widgets", None)
        fields.pop("current_quantity", None)

        if isinstance(claims, WidgetAssignments):
            claims = claims.model_dump(by_alias=True)

        try:
            record = HabitRecord.model_validate(fields)
            assignments = [WidgetAssignment.model_validate(claim) for claim in (claims or {}).get("assignments", [])]
        except ValidationError as e:
            raise InvalidOperation(f"Invalid habit: {e}") from e

        for assignment in assignments:
            known = is_known_slot(assignment.slot_type, assignment.slot_order)
            if known and not record.holds_slot(assignment.slot_type, assignment.slot_order):
                _claim_slot(document, record, assignment.slot_type, assignment.slot_order)
        return record

    @staticmethod
    async def create_many(
        store: HabitStore,
        items: Iterable[HabitInput],
        merge_history: bool = False,
        retroactive_goal: bool = False,
    ) -> List["HabitEntity"]:
        """
        Create or merge several habits in a single document write.

        Args:
            store: Habit store
            items: Records or field mappings (attribute names or JSON keys)
            merge_history: Also merge supplied history entries into existing
                habits. Supplied days win; entries without a goal keep the
                day's recorded goal (or the habit goal)
            retroactive_goal: Rewrite every history goal when a goal changes

        Returns:
            Entities for the created/merged habits, in input order
        """
        requests = [_input_fields(item) for item in items]
        for fields in requests:
            _validate_editable(fields)
            if "history" in fields and not isinstance(fields["history"], Mapping):
                raise InvalidOperation("History must be a mapping of date -> entry")

        today = today_key()
        document = await store.load()
        touched: List[HabitRecord] = []

        for fields in requests:
            existing = document.find(fields["id"]) if fields.get("id") else None

            if existing is not None:
                HabitEntity._merge_into(existing, fields, today, retroactive_goal)
                if merge_history:
                    incoming = normalize_history(dict(fields.get("history") or {}))
                    try:
                        for key, entry in incoming.items():
                            if isinstance(entry, Mapping) and "goal" not in entry:
                                previous = existing.history.get(key)
                                entry = {**entry, "goal": previous.goal if previous else existing.effective_goal}
                            existing.history[key] = HistoryEntry.model_validate(entry)
                    except ValidationError as e:
                        raise InvalidOperation(f"Invalid history for {existing.id}: {e}") from e
                record = existing
                logger.info(f"[HABIT ENTITY] Merged habit {record.id} ({record.name})")
            else:
                record = HabitEntity._new_record(document, fields)
                document.habits.append(record)
                logger.info(f"[HABIT ENTITY] Created habit {record.id} ({record.name}, order {record.list_order})")

            record.sync_today_cache(today)
            touched.append(record)

        await store.save(document)
        return [HabitEntity(store, record) for record in touched]

    @staticmethod
    async def create(store: HabitStore, item: HabitInput, retroactive_goal: bool = False) -> "HabitEntity":
        """Create a habit, or merge into the existing habit with the same id"""
        entities = await HabitEntity.create_many(store, [item], retroactive_goal=retroactive_goal)
        return entities[0]

    @staticmethod
    async def delete_habit(store: HabitStore, habit_id: str) -> None:
        """Remove a habit with its history, freeing any widget slots it held"""
        document = await store.load()
        index = document.index_of(habit_id)
        if index == -1:
            raise NotFound(habit_id)

        removed = document.habits.pop(index)
        # A stored duplicate of this id would otherwise take its place on the next load
        document.discard_unparsed(habit_id)
        await store.save(document)

        freed = ", ".join(f"{a.slot_type}-{a.slot_order}" for a in removed.assignments) or "none"
        logger.info(f"[HABIT ENTITY] Deleted habit {habit_id} ({len(removed.history)} history days, slots freed: {freed})")

    @staticmethod
    async def update_list_order(store: HabitStore, ordered: Iterable[Union[str, "HabitEntity"]]) -> None:
        """
        Bulk reorder in one document write.

        Listed habits get orders 1..n in the given sequence; habits not listed
        follow them, keeping their current relative order.
        """
        ordered_ids = [item.id if isinstance(item, HabitEntity) else item for item in ordered]
        if len(set(ordered_ids)) != len(ordered_ids):
            raise InvalidOperation("Duplicate habit ids in list order")

        document = await store.load()
        for habit_id in ordered_ids:
            if document.find(habit_id) is None:
                raise NotFound(habit_id)

        listed = {habit_id: position for position, habit_id in enumerate(ordered_ids, start=1)}
        rest = [record for record in document.sorted_habits() if record.id not in listed]

        for record in document.habits:
            if record.id in listed:
                record.list_order = listed[record.id]
        for position, record in enumerate(rest, start=len(ordered_ids) + 1):
            record.list_order = position

        await store.save(document)
        logger.info(f"[HABIT ENTITY] Reordered {len(ordered_ids)} habits")
