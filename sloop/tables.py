"""The set of typed tables that live in one store."""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from sloop.keys import EventCountKey, ResourceSummaryKey, WatchActivityKey, WatchTableKey
from sloop.kvstore import MemoryStore
from sloop.table import Table

log = logging.getLogger(__name__)


class Tables:
    """The watch, resource summary, event count and watch activity tables of a store."""

    def __init__(self, db: MemoryStore):
        self.db = db
        self.resource_summary_table = Table(ResourceSummaryKey)
        self.event_count_table = Table(EventCountKey)
        self.watch_table = Table(WatchTableKey)
        self.watch_activity_table = Table(WatchActivityKey)

    def get_min_and_max_partition(self) -> Optional[Tuple[str, str]]:
        """Return the smallest and largest partition ids over the GC'd tables.

        Returns None when none of those tables hold any rows.
        """
        partitions: List[str] = []
        with self.db.view() as txn:
            for table in self.get_tables():
                bounds = table.get_min_max_partitions(txn)
                if bounds is not None:
                    partitions.extend(bounds)
        if not partitions:
            return None
        partitions.sort()
        return partitions[0], partitions[-1]

    def get_table_names(self) -> List[str]:
        """Return the names of the tables whose partitions are cleaned up."""
        return [
            self.watch_table.table_name,
            self.resource_summary_table.table_name,
            self.event_count_table.table_name,
        ]

    def get_tables(self) -> List[Table]:
        """Return the tables whose partitions are tracked for cleanup."""
        return [self.event_count_table, self.resource_summary_table, self.watch_table]