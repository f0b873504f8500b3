"""
Widget bridge - the key/value surface shared with the OS widget renderer.

The native plugin exposes getItem / setItem / removeItem keyed by
(key, group) and reloadAllTimelines to make widgets redraw. WidgetBridge is
that interface; the implementations here cover an on-disk shared container
and an in-memory bridge for tests and previews.
"""
import asyncio
import os
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Tuple

from loguru import logger


class WidgetBridge(ABC):
    """Native widget-sharing surface (all calls may fail)"""

    @abstractmethod
    async def get_item(self, key: str, group: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set_item(self, key: str, value: str, group: str) -> None:
        ...

    @abstractmethod
    async def remove_item(self, key: str, group: str) -> None:
        ...

    @abstractmethod
    async def reload_all_timelines(self) -> None:
        ...


class SharedContainerBridge(WidgetBridge):
    """
    App-group container kept on disk.

    Layout: <root>/<group>/<key>.json, plus <root>/timelines.stamp which is
    rewritten on every reload request so a widget renderer can watch it.
    """

    STAMP_FILE = "timelines.stamp"

    def __init__(self, root: Path):
        self.root = Path(root)

    def _item_path(self, key: str, group: str) -> Path:
        return self.root / group / f"{key}.json"

    async def get_item(self, key: str, group: str) -> Optional[str]:
        path = self._item_path(key, group)
        return await asyncio.to_thread(self._read, path)

    async def set_item(self, key: str, value: str, group: str) -> None:
        path = self._item_path(key, group)
        await asyncio.to_thread(self._write, path, value)

    async def remove_item(self, key: str, group: str) -> None:
        path = self._item_path(key, group)
        await asyncio.to_thread(path.unlink, True)

    async def reload_all_timelines(self) -> None:
        stamp = self.root / self.STAMP_FILE
        await asyncio.to_thread(self._write, stamp, str(time.time()))
        logger.debug(f"[WIDGET BRIDGE] Timeline reload requested ({stamp})")

    @staticmethod
    def _read(path: Path) -> Optional[str]:
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    @staticmethod
    def _write(path: Path, value: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        tmp_path.write_text(value, encoding="utf-8")
        os.replace(tmp_path, path)


class InMemoryWidgetBridge(WidgetBridge):
    """
    Dictionary-backed bridge.

    Attributes:
        fail_on: names of calls that should raise (e.g. {"set_item"})
        reload_count: number of reload_all_timelines calls received
    """

    def __init__(self):
        self.items: Dict[Tuple[str, str], str] = {}
        self.fail_on = set()
        self.reload_count = 0

    def _maybe_fail(self, call: str) -> None:
        if call in self.fail_on:
            raise RuntimeError(f"Simulated widget bridge failure in {call}")

    def external_set(self, key: str, value: str, group: str) -> None:
        """Write as the widget extension would, without any in-process event"""
        self.items[(key, group)] = value

    async def get_item(self, key: str, group: str) -> Optional[str]:
        self._maybe_fail("get_item")
        return self.items.get((key, group))

    async def set_item(self, key: str, value: str, group: str) -> None:
        self._maybe_fail("set_item")
        self.items[(key, group)] = value

    async def remove_item(self, key: str, group: str) -> None:
        self._maybe_fail("remove_item")
        self.items.pop((key, group), None)

    async def reload_all_timelines(self) -> None:
        self._maybe_fail("reload_all_timelines")
        self.reload_count += 1
