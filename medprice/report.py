from __future__ import annotations

import json
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import quote

from .basket import ConfirmResult, compare_pharmacies
from .models import CitationLink, PriceRecord


def share_text(record: PriceRecord) -> str:
    return (
        f"Check out prices for {record.medication_name} on MedPrice AI! "
        f"Average price: {record.average_price}. Cheapest at {record.cheapest_pharmacy}."
    )


def map_view_url(record: PriceRecord, links: list[CitationLink]) -> str:
    """First map citation from the latest analysis, else a Google Maps search."""
    for link in links:
        if "google.com/maps" in link.uri:
            return link.uri
    query = quote(f"pharmacies selling {record.medication_name} near me", safe="")
    return f"https://www.google.com/maps/search/{query}"


def reservation_message(result: ConfirmResult) -> str:
    if not result.confirmed:
        return "Please select at least one item to reserve."
    return (
        f"Reservation confirmed for {len(result.items)} items at {result.pharmacy}! "
        "You will receive a notification when it's ready for collection."
    )


def record_summary_text(record: PriceRecord, links: list[CitationLink] | None = None) -> str:
    lines = [
        f"{record.medication_name}  ({record.dosage})",
        f"  {record.description}",
        f"  Average: {record.average_price}   Cheapest: {record.cheapest_pharmacy}",
        "",
    ]
    for i, o in enumerate(record.offers, 1):
        lines.append(f"  {i}. {o.pharmacy_name}  {o.price}  [{o.stock_status.value}]")
        lines.append(f"     {o.address}  ({o.distance})")
        if o.url:
            lines.append(f"     {o.url}")
    if not record.offers:
        lines.append("  No pharmacy prices found.")

    g = record.generic_alternative
    if g is not None:
        lines.append("")
        lines.append(f"  Generic: {g.name} at {g.price}  (potential savings: {g.savings})")

    if links:
        lines.append("")
        lines.append("  Sources:")
        for link in links:
            lines.append(f"    - {link.title}: {link.uri}")
    return "\n".join(lines)


@dataclass
class BasketItemLine:
    medication_name: str
    dosage: str
    offers: int


@dataclass
class PharmacyLine:
    pharmacy_name: str
    total: str


@dataclass
class BasketReport:
    timestamp: str
    items: list[BasketItemLine]
    common: list[PharmacyLine]

    def summary_text(self) -> str:
        lines = [f"Basket: {self.timestamp}  ({len(self.items)} items)", ""]
        for i, it in enumerate(self.items, 1):
            lines.append(f"  {i}. {it.medication_name}  {it.dosage}  ({it.offers} offers)")
        lines.append("")
        if not self.common:
            lines.append("No single pharmacy has all items in stock. Try comparing individually.")
        for c in self.common:
            lines.append(f"  {c.pharmacy_name}: {c.total}")
        return "\n".join(lines)

    def write_json(self, path: str = "artifacts/basket_report.json") -> str:
        out = Path(path)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(json.dumps(asdict(self), indent=2, ensure_ascii=False))
        return str(out)


def build_basket_report(records: list[PriceRecord] | tuple[PriceRecord, ...]) -> BasketReport:
    return BasketReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        items=[BasketItemLine(r.medication_name, r.dosage, len(r.offers)) for r in records],
        common=[PharmacyLine(t.pharmacy_name, t.formatted) for t in compare_pharmacies(list(records))],
    )
