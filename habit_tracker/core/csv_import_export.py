"""CSV import/export of habit history (one column per habit, one row per day)."""

from __future__ import annotations

import csv
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from loguru import logger

from ..habits.constants import CHECKBOX, QUANTITY, HabitKind
from ..habits.dates import normalize_date_key
from ..habits.habit_entity import HabitEntity
from ..habits.models import Number
from ..storage.habit_store import HabitStore
from .errors import InvalidOperation

DATE_COLUMN = "Date"
TRUTHY_VALUES = {"1", "true", "yes", "y"}

_HEADER_PATTERN = re.compile(r'^"?([^"]+?)"?(?:\s*\(([^)]+)\))?\s*$')

# Parsed data -----------------------------------------------------------------


@dataclass
class ParsedHabitColumn:
	"""One habit column read from a CSV file."""

	name: str
	unit: Optional[str]
	kind: HabitKind
	values: List[Tuple[str, Number]] = field(default_factory=list)


# Utility helpers -------------------------------------------------------------


def _format_header(entity: HabitEntity) -> str:
	return f"{entity.name} ({entity.unit})" if entity.unit else entity.name


def _format_quantity(value: Number) -> str:
	if isinstance(value, float) and value.is_integer():
		return str(int(value))
	return str(value)


def _parse_header(header: str) -> Tuple[str, Optional[str]]:
	match = _HEADER_PATTERN.match(header.strip())
	if not match:
		return header.strip(), None
	return match.group(1).strip(), match.group(2).strip() if match.group(2) else None


def _parse_quantity(raw: str) -> Optional[Number]:
	try:
		value = float(raw)
	except ValueError:
		return None
	if value != value:  # NaN
		return None
	return int(value) if value.is_integer() else value


# Public API -----------------------------------------------------------------


async def export_habits_csv(store: HabitStore, target_path: Union[str, Path]) -> int:
	"""
	Write every habit's history to *target_path*.

	Returns:
		Number of date rows written

	Raises:
		InvalidOperation: there are no habits or no recorded history
	"""

	habits = await HabitEntity.load_all(store)
	if not habits:
		raise InvalidOperation("No habits available to export")

	dates = sorted({key for habit in habits for key in habit.history})
	if not dates:
		raise InvalidOperation("No data available to export")

	file_path = Path(target_path).expanduser().resolve()
	file_path.parent.mkdir(parents=True, exist_ok=True)

	# utf-8-sig adds the BOM spreadsheet tools expect
	with file_path.open("w", newline="", encoding="utf-8-sig") as handle:
		writer = csv.writer(handle)
		writer.writerow([DATE_COLUMN] + [_format_header(habit) for habit in habits])
		for date_key in dates:
			row = [date_key]
			for habit in habits:
				entry = habit.record.history.get(date_key)
				row.append(_format_quantity(entry.quantity) if entry else "")
			writer.writerow(row)

	logger.info(f"[CSV Export] Exported {len(dates)} days for {len(habits)} habits into {file_path}")
	return len(dates)


def parse_habits_csv(source_path: Union[str, Path]) -> List[ParsedHabitColumn]:
	"""
	Read habit columns from *source_path*.

	A header "Name (unit)" marks a quantity habit; a bare name a checkbox habit.
	Rows with an invalid date and empty or non-numeric cells are skipped.
	"""

	file_path = Path(source_path).expanduser().resolve()
	if not file_path.exists():
		raise FileNotFoundError(f"Import file does not exist: {file_path}")

	with file_path.open("r", newline="", encoding="utf-8-sig") as handle:
		reader = csv.DictReader(handle)
		field_names = reader.fieldnames or []
		rows = list(reader)

	if DATE_COLUMN not in field_names or len(field_names) < 2 or not rows:
		raise InvalidOperation("CSV file is empty or invalid")

	columns: List[Tuple[str, ParsedHabitColumn]] = []
	for header in field_names:
		if header == DATE_COLUMN:
			continue
		name, unit = _parse_header(header)
		kind = QUANTITY if unit else CHECKBOX
		columns.append((header, ParsedHabitColumn(name=name, unit=unit, kind=kind)))

	skipped = 0
	for row in rows:
		date_key = normalize_date_key(row.get(DATE_COLUMN) or "")
		if date_key is None:
			skipped += 1
			continue

		for header, column in columns:
			raw = (row.get(header) or "").strip()
			if raw == "":
				continue
			if column.kind == CHECKBOX:
				column.values.append((date_key, 1 if raw.lower() in TRUTHY_VALUES else 0))
				continue
			value = _parse_quantity(raw)
			if value is not None:
				column.values.append((date_key, value))

	if skipped:
		logger.warning(f"[CSV Import] Skipped {skipped} rows with invalid dates in {file_path}")

	return [column for _, column in columns]


async def import_habits_csv(store: HabitStore, source_path: Union[str, Path]) -> Dict[str, int]:
	"""
	Import habit columns from *source_path* in a single document write.

	Columns are matched to existing habits by name (case-insensitive); their
	values overwrite the same days. Unmatched columns become new habits.

	Returns:
		Counts of created and updated habits and imported values
	"""

	columns = parse_habits_csv(source_path)
	existing = {habit.name.strip().lower(): habit for habit in await HabitEntity.load_all(store)}

	items = []
	created = updated = values = 0
	for column in columns:
		match = existing.get(column.name.lower())
		if match is not None and match.kind != column.kind:
			logger.warning(
				f"[CSV Import] Column '{column.name}' is {column.kind} but habit {match.id} is {match.kind}; skipping"
			)
			continue

		if match is not None:
			history = {date_key: {"quantity": value} for date_key, value in column.values}
			items.append({"id": match.id, "history": history})
			updated += 1
		else:
			goal = 1 if column.kind == CHECKBOX else 0
			history = {date_key: {"quantity": value, "goal": goal} for date_key, value in column.values}
			items.append({"name": column.name, "type": column.kind, "unit": column.unit, "goal": goal, "history": history})
			created += 1
		values += len(column.values)

	if items:
		await HabitEntity.create_many(store, items, merge_history=True)

	logger.success(f"[CSV Import] Imported {values} values ({created} new habits, {updated} updated)")
	return {"created": created, "updated": updated, "values": values}
