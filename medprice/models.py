from __future__ import annotations

import base64
import mimetypes
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from .errors import MalformedResponseError


class StockStatus(str, Enum):
    IN_STOCK = "In Stock"
    LOW_STOCK = "Low Stock"
    OUT_OF_STOCK = "Out of Stock"

    @classmethod
    def parse(cls, value: Any) -> "StockStatus":
        if not isinstance(value, str):
            raise MalformedResponseError(f"stockStatus must be a string, got {type(value).__name__}")
        # "In Stock", "in stock", "InStock" all map to the same status
        key = "".join(value.split()).lower()
        for status in cls:
            if "".join(status.value.split()).lower() == key:
                return status
        raise MalformedResponseError(f"Unknown stockStatus: {value!r}")


def _require_str(data: dict[str, Any], key: str, where: str) -> str:
    if key not in data:
        raise MalformedResponseError(f"{where}: missing field {key!r}")
    val = data[key]
    if not isinstance(val, str):
        raise MalformedResponseError(f"{where}: field {key!r} must be a string")
    return val


@dataclass(frozen=True)
class PharmacyOffer:
    """One pharmacy's quote for a medication."""

    pharmacy_name: str
    price: str                      # e.g. "€12.50", not guaranteed numeric
    stock_status: StockStatus
    distance: str                   # advisory, e.g. "0.8 km"
    address: str
    url: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> "PharmacyOffer":
        if not isinstance(data, dict):
            raise MalformedResponseError("price entry must be an object")
        url = data.get("url")
        if url is not None and not isinstance(url, str):
            raise MalformedResponseError("price entry: field 'url' must be a string")
        if "stockStatus" not in data:
            raise MalformedResponseError("price entry: missing field 'stockStatus'")
        return cls(
            pharmacy_name=_require_str(data, "pharmacyName", "price entry"),
            price=_require_str(data, "price", "price entry"),
            stock_status=StockStatus.parse(data["stockStatus"]),
            distance=_require_str(data, "distance", "price entry"),
            address=_require_str(data, "address", "price entry"),
            url=url or None,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "pharmacyName": self.pharmacy_name,
            "price": self.price,
            "stockStatus": self.stock_status.value,
            "distance": self.distance,
            "address": self.address,
        }
        if self.url:
            out["url"] = self.url
        return out


@dataclass(frozen=True)
class GenericAlternative:
    name: str
    price: str
    savings: str

    @classmethod
    def from_dict(cls, data: Any) -> "GenericAlternative":
        if not isinstance(data, dict):
            raise MalformedResponseError("genericAlternative must be an object")
        return cls(
            name=_require_str(data, "name", "genericAlternative"),
            price=_require_str(data, "price", "genericAlternative"),
            savings=_require_str(data, "savings", "genericAlternative"),
        )

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "price": self.price, "savings": self.savings}


@dataclass(frozen=True)
class PriceRecord:
    """One medication's comparison result.

    ``medication_name`` is the natural key for history, saved prescriptions
    and the basket. Records are never mutated; a re-fetch replaces them.
    """

    medication_name: str
    dosage: str
    description: str
    offers: tuple[PharmacyOffer, ...]
    cheapest_pharmacy: str          # oracle-reported, not recomputed
    average_price: str              # oracle-reported, not recomputed
    generic_alternative: GenericAlternative | None = None

    @classmethod
    def from_dict(cls, data: Any) -> "PriceRecord":
        if not isinstance(data, dict):
            raise MalformedResponseError("price record must be a JSON object")
        prices = data.get("prices")
        if not isinstance(prices, list):
            raise MalformedResponseError("price record: 'prices' must be a list")

        generic = data.get("genericAlternative")
        return cls(
            medication_name=_require_str(data, "medicationName", "price record"),
            dosage=_require_str(data, "dosage", "price record"),
            description=_require_str(data, "description", "price record"),
            offers=tuple(PharmacyOffer.from_dict(p) for p in prices),
            cheapest_pharmacy=_require_str(data, "cheapestOption", "price record"),
            average_price=_require_str(data, "averagePrice", "price record"),
            generic_alternative=GenericAlternative.from_dict(generic) if generic is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "medicationName": self.medication_name,
            "dosage": self.dosage,
            "description": self.description,
            "cheapestOption": self.cheapest_pharmacy,
            "averagePrice": self.average_price,
            "prices": [o.to_dict() for o in self.offers],
        }
        if self.generic_alternative is not None:
            out["genericAlternative"] = self.generic_alternative.to_dict()
        return out

    def offer_for(self, pharmacy_name: str) -> PharmacyOffer | None:
        # exact-string match, no case or whitespace folding
        for offer in self.offers:
            if offer.pharmacy_name == pharmacy_name:
                return offer
        return None

    def pharmacy_names(self) -> list[str]:
        return [o.pharmacy_name for o in self.offers]


@dataclass(frozen=True)
class CitationLink:
    """A web page or map listing the oracle grounded its answer on."""

    uri: str
    title: str


@dataclass(frozen=True)
class Location:
    lat: float
    lng: float


@dataclass(frozen=True)
class ImagePayload:
    data: bytes = field(repr=False)
    mime_type: str = "image/png"

    @classmethod
    def from_data_url(cls, url: str) -> "ImagePayload":
        # data:image/png;base64,iVBORw0...
        header, sep, payload = url.partition(",")
        if not sep:
            raise ValueError("Not a data URL")
        mime_type = "image/png"
        if header.startswith("data:"):
            mime_type = header[len("data:"):].split(";", 1)[0] or mime_type
        return cls(data=base64.b64decode(payload), mime_type=mime_type)

    @classmethod
    def from_path(cls, path: str | Path) -> "ImagePayload":
        p = Path(path)
        mime_type, _ = mimetypes.guess_type(p.name)
        return cls(data=p.read_bytes(), mime_type=mime_type or "image/png")

    def b64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")
