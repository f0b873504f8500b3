"""
Main entry point for Habit Tracker
"""
import argparse
import asyncio
import sys
from typing import List, Optional

from loguru import logger

from habit_tracker.core.config import config, ensure_directories
from habit_tracker.core.csv_import_export import export_habits_csv, import_habits_csv
from habit_tracker.core.errors import HabitStoreError
from habit_tracker.habits.constants import QUANTITY
from habit_tracker.habits.habit_entity import HabitEntity
from habit_tracker.habits.widget_slots import build_widget_index
from habit_tracker.storage.habit_store import HabitStore, build_habit_store


def setup_logging() -> None:
    """Configure application logging"""
    # Remove default logger
    logger.remove()

    # Add console logger
    logger.add(
        sys.stderr,
        format=config.LOG_FORMAT,
        level=config.LOG_LEVEL,
        colorize=True,
    )

    # Add file logger
    log_file = config.LOGS_DIR / "habit_tracker.log"
    logger.add(
        log_file,
        format=config.LOG_FORMAT,
        level=config.LOG_LEVEL,
        rotation=config.LOG_ROTATION,
        retention=config.LOG_RETENTION,
        encoding="utf-8",
    )

    logger.info(f"Starting {config.APP_NAME} v{config.APP_VERSION}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="habit-tracker", description="Show today's habits and widget slots")
    parser.add_argument("--export", metavar="CSV", help="Export habit history to a CSV file")
    parser.add_argument("--import", dest="import_path", metavar="CSV", help="Import habit history from a CSV file")
    return parser


async def log_summary(store: HabitStore) -> None:
    """Log every habit with today's status, then widget slot occupancy"""
    habits = await HabitEntity.load_all(store)
    logger.info(f"{len(habits)} habits stored ({store.backend.name} backend)")

    for habit in habits:
        progress = f"{habit.quantity_for()}/{habit.goal}" if habit.kind == QUANTITY else ""
        logger.info(f"  {habit.list_order:>3}. {habit.name} [{habit.status_for()}] {progress}".rstrip())

    index = build_widget_index(habits)
    occupied = [(slot, holder) for slot, holder in index.items() if holder is not None]
    logger.info(f"Widget slots: {len(occupied)}/{len(index)} occupied")
    names = {habit.id: habit.name for habit in habits}
    for slot, holder in occupied:
        logger.info(f"  {slot.slot_id}: {names.get(holder, holder)}")


async def run(args: argparse.Namespace) -> None:
    store = build_habit_store()
    try:
        if args.import_path:
            await import_habits_csv(store, args.import_path)
        if args.export:
            rows = await export_habits_csv(store, args.export)
            logger.success(f"Exported {rows} days to {args.export}")
        await log_summary(store)
    finally:
        await store.close()


def main(argv: Optional[List[str]] = None) -> int:
    """Main application entry point"""
    args = build_parser().parse_args(argv)
    try:
        ensure_directories()
        setup_logging()
        asyncio.run(run(args))
        return 0

    except HabitStoreError as e:
        logger.error(f"{e}")
        return 1
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
