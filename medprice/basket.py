from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence

from .errors import CheckoutStateError
from .models import PriceRecord
from .pricing import format_price, parse_price
from .store import CollectionStore

NOTHING_SELECTED = "nothing selected"


def common_pharmacies(records: Sequence[PriceRecord]) -> list[str]:
    """Pharmacy names that appear in the offer list of every record.

    Names compare as exact strings. Result keeps first-seen order.
    """
    if not records:
        return []
    counts: dict[str, int] = {}
    for record in records:
        # a name listed twice inside one record still counts once
        for name in dict.fromkeys(record.pharmacy_names()):
            counts[name] = counts.get(name, 0) + 1
    return [name for name, n in counts.items() if n == len(records)]


def total_at(
    records: Iterable[PriceRecord],
    pharmacy_name: str,
    item_names: Iterable[str] | None = None,
) -> float:
    """Sum the pharmacy's prices over the chosen items.

    An item the pharmacy does not list adds 0 rather than being skipped or
    failing the whole total.
    """
    wanted = None if item_names is None else set(item_names)
    total = 0.0
    for record in records:
        if wanted is not None and record.medication_name not in wanted:
            continue
        offer = record.offer_for(pharmacy_name)
        if offer is not None:
            total += parse_price(offer.price)
    return total


@dataclass(frozen=True)
class PharmacyTotal:
    pharmacy_name: str
    total: float

    @property
    def formatted(self) -> str:
        return format_price(self.total)


def compare_pharmacies(records: Sequence[PriceRecord]) -> list[PharmacyTotal]:
    return [PharmacyTotal(name, total_at(records, name)) for name in common_pharmacies(records)]


class CheckoutState(str, Enum):
    BROWSING = "browsing"
    REVIEWING = "reviewing"


@dataclass(frozen=True)
class ConfirmResult:
    confirmed: bool
    pharmacy: str | None = None
    items: tuple[str, ...] = ()
    total: float = 0.0
    # the basket is empty after this confirmation, so its view should close
    close_basket: bool = False
    reason: str | None = None

    @property
    def formatted_total(self) -> str:
        return format_price(self.total)


class Checkout:
    """Pharmacy pick and item selection over the store's basket.

    Entering review pre-selects every basket item; the user opts items out.
    The selection is always a subset of the basket's item names.
    """

    def __init__(self, store: CollectionStore):
        self.store = store
        self._pharmacy: str | None = None
        self._selected: set[str] = set()
        store.subscribe_basket(self._on_basket_changed)

    def close(self) -> None:
        """Stop following the basket; the checkout is done with."""
        self._reset()
        self.store.unsubscribe_basket(self._on_basket_changed)

    @property
    def state(self) -> CheckoutState:
        return CheckoutState.BROWSING if self._pharmacy is None else CheckoutState.REVIEWING

    @property
    def selected_pharmacy(self) -> str | None:
        return self._pharmacy

    @property
    def selected_items(self) -> frozenset[str]:
        return frozenset(self._selected)

    def _require_reviewing(self, op: str) -> None:
        if self._pharmacy is None:
            raise CheckoutStateError(f"{op} needs a selected pharmacy")

    def _reset(self) -> None:
        self._pharmacy = None
        self._selected = set()

    def _on_basket_changed(self, names: frozenset[str]) -> None:
        if not names:
            self._reset()
            return
        self._selected &= names

    def select_pharmacy(self, name: str) -> None:
        if self._pharmacy is not None:
            raise CheckoutStateError(f"Already reviewing an order at {self._pharmacy}")
        if not self.store.basket:
            raise CheckoutStateError("Basket is empty")
        self._pharmacy = name
        self._selected = set(self.store.basket_names())

    def toggle_item(self, name: str) -> None:
        self._require_reviewing("toggle_item")
        if name not in self.store.basket_names():
            raise KeyError(name)
        if name in self._selected:
            self._selected.discard(name)
        else:
            self._selected.add(name)

    def toggle_select_all(self) -> None:
        self._require_reviewing("toggle_select_all")
        everything = set(self.store.basket_names())
        self._selected = set() if self._selected == everything else everything

    def select_all(self) -> None:
        self._require_reviewing("select_all")
        self._selected = set(self.store.basket_names())

    def deselect_all(self) -> None:
        self._require_reviewing("deselect_all")
        self._selected = set()

    def cancel(self) -> None:
        self._require_reviewing("cancel")
        self._reset()

    def basket_total(self, pharmacy_name: str) -> float:
        """Total at a pharmacy: selected items while reviewing, else the whole basket."""
        items = self._selected if self._pharmacy is not None else None
        return total_at(self.store.basket, pharmacy_name, items)

    def total(self) -> float:
        self._require_reviewing("total")
        return self.basket_total(self._pharmacy)

    def formatted_total(self) -> str:
        return format_price(self.total())

    def confirm(self) -> ConfirmResult:
        self._require_reviewing("confirm")
        if not self._selected:
            return ConfirmResult(confirmed=False, pharmacy=self._pharmacy, reason=NOTHING_SELECTED)

        pharmacy = self._pharmacy
        # keep basket order for the confirmed item list
        items = tuple(r.medication_name for r in self.store.basket if r.medication_name in self._selected)
        total = self.total()

        self._reset()
        self.store.remove_from_basket_many(items)
        return ConfirmResult(
            confirmed=True,
            pharmacy=pharmacy,
            items=items,
            total=total,
            close_basket=not self.store.basket,
        )
