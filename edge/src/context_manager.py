"""
Bounded store of prompt context for the reasoning oracle.
"""

import threading
from collections import deque
from typing import List

from shared.models import ContextItem, ContextItemType, FrameAnalysisResult


MAX_CONTEXT_ITEMS = 1000


class ContextManager:
    """Keeps the most recent context items for one device."""

    def __init__(self, device_id: str, max_items: int = MAX_CONTEXT_ITEMS):
        self.device_id = device_id
        self._items: deque = deque(maxlen=max_items)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def add_context_item(self, item: ContextItem) -> None:
        with self._lock:
            self._items.append(item)

    def add_analysis_result(self, result: FrameAnalysisResult) -> None:
        """Add the observation summary and one item per detected object."""
        items = [ContextItem.from_analysis_result(result)]
        for obj in result.objects:
            item = ContextItem.from_detected_object(obj)
            if not item.timestamp_us:
                item.timestamp_us = result.timestamp_us
            items.append(item)
        with self._lock:
            self._items.extend(items)

    def get_recent_context(self, max_items: int = 10) -> List[ContextItem]:
        with self._lock:
            items = list(self._items)
        if max_items <= 0:
            return []
        return items[-max_items:]

    def get_context_for_time_range(self, start_us: int, end_us: int) -> List[ContextItem]:
        with self._lock:
            return [item for item in self._items if start_us <= item.timestamp_us <= end_us]

    def get_context_for_object(self, track_id: str) -> List[ContextItem]:
        with self._lock:
            return [
                item for item in self._items
                if item.item_type == ContextItemType.OBJECT_DETECTION
                and item.metadata.get("trackId") == track_id
            ]

    def clear_old_context(self, older_than_us: int) -> int:
        """Remove items older than the given timestamp; returns the number removed."""
        with self._lock:
            kept = [item for item in self._items if item.timestamp_us >= older_than_us]
            removed = len(self._items) - len(kept)
            self._items = deque(kept, maxlen=self._items.maxlen)
        return removed
