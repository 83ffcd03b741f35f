"""
Persistence contract the engine runs against.

The one capability correctness depends on is update_delivery: a conditional write that
takes effect only if the row's current columns match `expect`, and otherwise changes nothing.
Expected values: None means IS NULL, a set/frozenset/tuple means "one of", anything else is equality.
"""
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any

from delivery_engine.delivery_state import DeliveryStatus
from delivery_engine.models import Bid, Delivery, DriverProfile, Rating, Role, SellerProfile

DELIVERY_COLUMNS = tuple(Delivery.model_fields)

# Columns no conditional write may touch
IMMUTABLE_COLUMNS = frozenset({"id", "seller_id", "created_at"})


def check_columns(expect: Mapping[str, Any], changes: Mapping[str, Any]) -> None:
    unknown = (set(expect) | set(changes)) - set(DELIVERY_COLUMNS)
    if unknown:
        raise KeyError(f"unknown delivery columns: {sorted(unknown)}")
    frozen = set(changes) & IMMUTABLE_COLUMNS
    if frozen:
        raise KeyError(f"immutable delivery columns: {sorted(frozen)}")


def _normalize(value: Any) -> Any:
    return value.value if isinstance(value, DeliveryStatus) else value


def matches(row: Delivery, expect: Mapping[str, Any]) -> bool:
    """True if row satisfies every expected column value."""
    for column, expected in expect.items():
        current = _normalize(getattr(row, column))
        if expected is None:
            if current is not None:
                return False
        elif isinstance(expected, (set, frozenset, tuple)):
            if current not in {_normalize(v) for v in expected}:
                return False
        elif current != _normalize(expected):
            return False
    return True


class DeliveryStore(ABC):

    # --- deliveries ---

    @abstractmethod
    async def insert_delivery(self, delivery: Delivery) -> Delivery: ...

    @abstractmethod
    async def get_delivery(self, delivery_id: str) -> Delivery | None: ...

    @abstractmethod
    async def list_deliveries(
        self,
        *,
        seller_id: str | None = None,
        chosen_driver_id: str | None = None,
        statuses: Iterable[DeliveryStatus] | None = None,
        ids: Iterable[str] | None = None,
    ) -> list[Delivery]:
        """Filtered rows, newest first."""

    @abstractmethod
    async def update_delivery(
        self,
        delivery_id: str,
        expect: Mapping[str, Any],
        changes: Mapping[str, Any],
    ) -> Delivery | None:
        """Apply changes only if the row still matches expect. Returns the new row, or None if zero rows matched."""

    @abstractmethod
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
        """update_delivery plus block_driver as one unit: both happen or neither does."""

    # --- bids ---

    @abstractmethod
    async def insert_bid(self, bid: Bid) -> Bid | None:
        """Insert only while the delivery is OPEN (None otherwise). Raises DuplicateBid on (delivery, driver) clash."""

    @abstractmethod
    async def delete_bid(self, delivery_id: str, driver_id: str) -> bool:
        """Delete only while the delivery is OPEN. True if a row was removed."""

    @abstractmethod
    async def get_bid(self, delivery_id: str, driver_id: str) -> Bid | None: ...

    @abstractmethod
    async def list_bids(self, delivery_id: str) -> list[Bid]:
        """Newest first."""

    @abstractmethod
    async def list_bids_by_driver(self, driver_id: str) -> list[Bid]: ...

    @abstractmethod
    async def count_bids(self, delivery_ids: Iterable[str]) -> dict[str, int]: ...

    # --- profiles (owned by the surrounding product; read-only here apart from seeding) ---

    @abstractmethod
    async def save_driver_profile(self, profile: DriverProfile) -> None: ...

    @abstractmethod
    async def save_seller_profile(self, profile: SellerProfile) -> None: ...

    @abstractmethod
    async def get_driver_profiles(self, driver_ids: Iterable[str]) -> dict[str, DriverProfile]: ...

    @abstractmethod
    async def get_seller_profile(self, seller_id: str) -> SellerProfile | None: ...

    # --- per-role soft hide ---

    @abstractmethod
    async def set_hidden(self, delivery_id: str, role: Role, hidden: bool = True) -> None: ...

    @abstractmethod
    async def hidden_ids(self, role: Role, delivery_ids: Iterable[str]) -> set[str]: ...

    # --- seller block list ---

    @abstractmethod
    async def block_driver(self, seller_id: str, driver_id: str, reason: str | None = None) -> None:
        """Idempotent."""

    @abstractmethod
    async def is_blocked(self, seller_id: str, driver_id: str) -> bool: ...

    @abstractmethod
    async def blocked_drivers(self, seller_id: str) -> set[str]: ...

    @abstractmethod
    async def sellers_blocking(self, driver_id: str) -> set[str]: ...

    # --- ratings ---

    @abstractmethod
    async def insert_rating(self, rating: Rating) -> Rating:
        """Raises DuplicateRating if the delivery was already rated."""
