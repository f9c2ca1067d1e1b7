"""
Inventory ledger.

Per-account record of the items the account believes it owns and which
of them are reserved by an outstanding offer.

KEY DESIGN PRINCIPLES:

1. Single mutation path
   - reserve / release / remove / add / apply_exchange / refresh are the
     only ways item records change
   - All of them take the account lock, so mutations never interleave

2. Missing keys degrade, never raise
   - A key absent from the ledger is "unavailable", never an error
   - Ledger and platform disagreeing is expected

3. Refresh is all-or-nothing
   - Every tracked pair is fetched before anything is replaced
   - Refreshed items come back unreserved; callers pass a callable that
     yields the keys to reserve again, evaluated inside the critical section
"""

import asyncio
import logging
from typing import Callable, Iterable, Optional

from .collaborators import InventoryFetcher
from .errors import InventoryFetchError
from .events import AccountEvents
from .types import Item, ItemKey, ItemRef, item_key

logger = logging.getLogger(__name__)


class InventoryLedger:
    """
    Items owned by one account, keyed by (collection, sub-collection, item id).

    `tracked` maps collection ids to the sub-collection ids that `refresh`
    keeps in sync with the platform.
    """

    def __init__(
        self,
        account_id: str,
        tracked: dict[str, list[str]],
        fetcher: InventoryFetcher,
        events: Optional[AccountEvents] = None,
    ):
        """
        Initialize the ledger.

        Args:
            account_id: Owning account
            tracked: {collection_id: [sub_collection_id, ...]}
            fetcher: Inventory-fetch collaborator
            events: Outward event emitter
        """
        self.account_id = account_id
        self.tracked = {
            str(collection): [str(sub) for sub in subs]
            for collection, subs in tracked.items()
        }
        self._fetcher = fetcher
        self._events = events or AccountEvents(account_id)
        self._lock = asyncio.Lock()

        self._items: dict[tuple[str, str], dict[str, Item]] = {
            pair: {} for pair in self.tracked_pairs()
        }

    def tracked_pairs(self) -> list[tuple[str, str]]:
        """All tracked (collection, sub-collection) pairs."""
        return [
            (collection, sub)
            for collection, subs in self.tracked.items()
            for sub in subs
        ]

    # ============== Reads ==============

    def _lookup(self, key: ItemKey) -> Optional[Item]:
        slot = self._items.get((key.collection_id, key.sub_collection_id))
        if slot is None:
            return None
        return slot.get(key.item_id)

    def get(self, item: ItemRef) -> Optional[Item]:
        """Item record for a key, or None."""
        return self._lookup(item_key(item))

    def __contains__(self, item: ItemRef) -> bool:
        return self.get(item) is not None

    def __len__(self) -> int:
        return sum(len(slot) for slot in self._items.values())

    def is_reserved(self, item: ItemRef) -> bool:
        record = self.get(item)
        return record is not None and record.reserved

    def items(self, collection_id: str, sub_collection_id: str) -> list[Item]:
        """Items held in one pair (empty if the pair is unknown)."""
        slot = self._items.get((str(collection_id), str(sub_collection_id)), {})
        return list(slot.values())

    def all_items(self) -> list[Item]:
        return [item for slot in self._items.values() for item in slot.values()]

    def reserved_keys(self) -> set[ItemKey]:
        return {item.key for item in self.all_items() if item.reserved}

    def unavailable(self, items: Iterable[ItemRef]) -> list[ItemKey]:
        """Keys that are absent or already reserved."""
        result = []
        for item in items:
            key = item_key(item)
            record = self._lookup(key)
            if record is None or record.reserved:
                result.append(key)
        return result

    async def available(self, items: Iterable[ItemRef]) -> list[ItemKey]:
        """
        Check items for offering.

        Returns:
            The unavailable subset; empty means every item may be offered
        """
        async with self._lock:
            return self.unavailable(items)

    # ============== Mutations ==============

    def _set_reserved(self, items: Iterable[ItemRef], value: bool) -> list[ItemKey]:
        changed = []
        for item in items:
            key = item_key(item)
            record = self._lookup(key)
            if record is None:
                continue
            record.reserved = value
            changed.append(key)
        return changed

    async def reserve(self, items: Iterable[ItemRef]) -> list[ItemKey]:
        """
        Mark items reserved.

        Items missing from the ledger are skipped and reported.

        Returns:
            Keys that were reserved
        """
        items = list(items)
        async with self._lock:
            reserved = self._set_reserved(items, True)
        missing = len(items) - len(reserved)
        if missing:
            self._events.warning(f"{missing} items to reserve are not in the inventory")
        return reserved

    async def try_reserve(self, items: Iterable[ItemRef]) -> list[ItemKey]:
        """
        Reserve all items or none.

        Returns:
            The unavailable subset; empty means every item is now reserved
        """
        items = list(items)
        async with self._lock:
            unavailable = self.unavailable(items)
            if not unavailable:
                self._set_reserved(items, True)
            return unavailable

    async def release(self, items: Iterable[ItemRef]) -> list[ItemKey]:
        """Clear reservations. Missing items are ignored."""
        async with self._lock:
            return self._set_reserved(items, False)

    def _remove(self, items: Iterable[ItemRef]) -> int:
        removed = 0
        for item in items:
            key = item_key(item)
            slot = self._items.get((key.collection_id, key.sub_collection_id))
            if slot is not None and slot.pop(key.item_id, None) is not None:
                removed += 1
        return removed

    def _add(self, items: Iterable[Item]) -> int:
        added = 0
        for item in items:
            record = item.copy()
            record.reserved = False
            pair = (record.collection_id, record.sub_collection_id)
            self._items.setdefault(pair, {})[record.item_id] = record
            added += 1
        return added

    async def remove(self, items: Iterable[ItemRef]) -> int:
        """Delete item records. Returns how many existed."""
        async with self._lock:
            return self._remove(items)

    async def add(self, items: Iterable[Item]) -> int:
        """Insert or overwrite item records, unreserved."""
        async with self._lock:
            return self._add(items)

    async def apply_exchange(
        self,
        sent: Iterable[ItemRef],
        received: Iterable[Item],
    ) -> tuple[int, int]:
        """
        Record a completed exchange.

        Sent items are removed before received items are added, within one
        critical section.

        Returns:
            (removed, added)
        """
        async with self._lock:
            removed = self._remove(sent)
            added = self._add(received)
        return removed, added

    async def refresh(
        self,
        reapply: Optional[Callable[[], Iterable[ItemRef]]] = None,
    ) -> int:
        """
        Re-synchronize every tracked pair from the platform.

        Args:
            reapply: Returns the keys whose reservation survives the refresh.
                Called under the lock after the records are replaced, so
                reservations taken or released while fetching are honored.

        Returns:
            Number of items now tracked

        Raises:
            InventoryFetchError: if any pair fails; the ledger is unchanged
        """
        pairs = self.tracked_pairs()
        results = await asyncio.gather(
            *(self._fetcher.fetch_inventory(self.account_id, c, s) for c, s in pairs),
            return_exceptions=True,
        )

        for (collection, sub), result in zip(pairs, results):
            if isinstance(result, BaseException):
                self._events.err(
                    f"Error fetching inventory {collection}/{sub}", result
                )
                raise InventoryFetchError(
                    f"Refresh failed for {collection}/{sub}: {result}"
                ) from result

        async with self._lock:
            for pair, fetched in zip(pairs, results):
                self._items[pair] = {}
                self._add(fetched)
            if reapply is not None:
                self._set_reserved(reapply(), True)
            total = sum(len(self._items[pair]) for pair in pairs)

        self._events.info(f"Tracked inventories have {total} items")
        return total
