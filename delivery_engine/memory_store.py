"""
In-process DeliveryStore. Every write runs under one asyncio.Lock, which gives the same
single-row check-then-write atomicity Postgres gives a conditional UPDATE.
Used by the test suite and by STORAGE_BACKEND=memory local runs.
"""
import asyncio
from collections.abc import Iterable, Mapping
from typing import Any

from delivery_engine.delivery_state import DeliveryStatus
from delivery_engine.errors import DuplicateBid, DuplicateRating
from delivery_engine.models import Bid, Delivery, DriverProfile, Rating, Role, SellerProfile
from delivery_engine.store import DeliveryStore, check_columns, matches


class MemoryStore(DeliveryStore):

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._deliveries: dict[str, Delivery] = {}
        self._bids: dict[tuple[str, str], Bid] = {}
        self._drivers: dict[str, DriverProfile] = {}
        self._sellers: dict[str, SellerProfile] = {}
        self._hidden: set[tuple[str, Role]] = set()
        self._blocked: dict[tuple[str, str], str | None] = {}
        self._ratings: dict[str, Rating] = {}

    async def _yield(self) -> None:
        # let concurrent callers interleave the way they would around a network round trip
        await asyncio.sleep(0)

    async def insert_delivery(self, delivery: Delivery) -> Delivery:
        await self._yield()
        async with self._lock:
            if delivery.id in self._deliveries:
                raise KeyError(f"delivery {delivery.id} already exists")
            self._deliveries[delivery.id] = delivery
        return delivery

    async def get_delivery(self, delivery_id: str) -> Delivery | None:
        await self._yield()
        return self._deliveries.get(delivery_id)

    async def list_deliveries(
        self,
        *,
        seller_id: str | None = None,
        chosen_driver_id: str | None = None,
        statuses: Iterable[DeliveryStatus] | None = None,
        ids: Iterable[str] | None = None,
    ) -> list[Delivery]:
        await self._yield()
        wanted_statuses = set(statuses) if statuses is not None else None
        wanted_ids = set(ids) if ids is not None else None
        rows = [
            d for d in self._deliveries.values()
            if (seller_id is None or d.seller_id == seller_id)
            and (chosen_driver_id is None or d.chosen_driver_id == chosen_driver_id)
            and (wanted_statuses is None or d.status in wanted_statuses)
            and (wanted_ids is None or d.id in wanted_ids)
        ]
        return sorted(rows, key=lambda d: d.created_at, reverse=True)

    async def update_delivery(
        self,
        delivery_id: str,
        expect: Mapping[str, Any],
        changes: Mapping[str, Any],
    ) -> Delivery | None:
        check_columns(expect, changes)
        await self._yield()
        async with self._lock:
            current = self._deliveries.get(delivery_id)
            if current is None or not matches(current, expect):
                return None
            updated = current.model_copy(update=dict(changes))
            self._deliveries[delivery_id] = updated
            return updated

    async def release_and_block(
        self,
        delivery_id: str,
        expect: Mapping[str, Any],
        changes: Mapping[str, Any],
        *,
        seller_id: str,
        driver_id: str,
        reason: str | None = None,
    ) -> Delivery | None:
        check_columns(expect, changes)
        await self._yield()
        async with self._lock:
            current = self._deliveries.get(delivery_id)
            if current is None or not matches(current, expect):
                return None
            updated = current.model_copy(update=dict(changes))
            self._deliveries[delivery_id] = updated
            self._blocked.setdefault((seller_id, driver_id), reason)
            return updated

    async def insert_bid(self, bid: Bid) -> Bid | None:
        await self._yield()
        async with self._lock:
            delivery = self._deliveries.get(bid.delivery_id)
            if delivery is None or delivery.status is not DeliveryStatus.OPEN:
                return None
            key = (bid.delivery_id, bid.driver_id)
            if key in self._bids:
                raise DuplicateBid(delivery_id=bid.delivery_id, driver_id=bid.driver_id)
            self._bids[key] = bid
            return bid

    async def delete_bid(self, delivery_id: str, driver_id: str) -> bool:
        await self._yield()
        async with self._lock:
            delivery = self._deliveries.get(delivery_id)
            if delivery is None or delivery.status is not DeliveryStatus.OPEN:
                return False
            return self._bids.pop((delivery_id, driver_id), None) is not None

    async def get_bid(self, delivery_id: str, driver_id: str) -> Bid | None:
        await self._yield()
        return self._bids.get((delivery_id, driver_id))

    async def list_bids(self, delivery_id: str) -> list[Bid]:
        await self._yield()
        rows = [b for b in self._bids.values() if b.delivery_id == delivery_id]
        return sorted(rows, key=lambda b: b.created_at, reverse=True)

    async def list_bids_by_driver(self, driver_id: str) -> list[Bid]:
        await self._yield()
        rows = [b for b in self._bids.values() if b.driver_id == driver_id]
        return sorted(rows, key=lambda b: b.created_at, reverse=True)

    async def count_bids(self, delivery_ids: Iterable[str]) -> dict[str, int]:
        await self._yield()
        counts = {delivery_id: 0 for delivery_id in delivery_ids}
        for delivery_id, _driver_id in self._bids:
            if delivery_id in counts:
                counts[delivery_id] += 1
        return counts

    async def save_driver_profile(self, profile: DriverProfile) -> None:
        self._drivers[profile.id] = profile

    async def save_seller_profile(self, profile: SellerProfile) -> None:
        self._sellers[profile.id] = profile

    async def get_driver_profiles(self, driver_ids: Iterable[str]) -> dict[str, DriverProfile]:
        await self._yield()
        return {i: self._drivers[i] for i in driver_ids if i in self._drivers}

    async def get_seller_profile(self, seller_id: str) -> SellerProfile | None:
        await self._yield()
        return self._sellers.get(seller_id)

    async def set_hidden(self, delivery_id: str, role: Role, hidden: bool = True) -> None:
        async with self._lock:
            if hidden:
                self._hidden.add((delivery_id, role))
            else:
                self._hidden.discard((delivery_id, role))

    async def hidden_ids(self, role: Role, delivery_ids: Iterable[str]) -> set[str]:
        return {i for i in delivery_ids if (i, role) in self._hidden}

    async def block_driver(self, seller_id: str, driver_id: str, reason: str | None = None) -> None:
        async with self._lock:
            self._blocked.setdefault((seller_id, driver_id), reason)

    async def is_blocked(self, seller_id: str, driver_id: str) -> bool:
        return (seller_id, driver_id) in self._blocked

    async def blocked_drivers(self, seller_id: str) -> set[str]:
        return {driver for seller, driver in self._blocked if seller == seller_id}

    async def sellers_blocking(self, driver_id: str) -> set[str]:
        return {seller for seller, driver in self._blocked if driver == driver_id}

    async def insert_rating(self, rating: Rating) -> Rating:
        await self._yield()
        async with self._lock:
            if rating.delivery_id in self._ratings:
                raise DuplicateRating(delivery_id=rating.delivery_id)
            self._ratings[rating.delivery_id] = rating
            return rating
