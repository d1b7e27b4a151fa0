"""
Extraction Adapters

Turn a matched candidate into ordered line items, going through the run's
RateLimitedClient for every provider call.

    PhotoExtractionAdapter   place details -> PhotoItem list
    MenuExtractionAdapter    menu detail blob -> MenuLine list

Empty provider data is an empty list, not an error. Both adapters cap the
number of items per record; the first `max_items` in provider order win.

Author: Khalil_Bannouri
Version: 1.0.0
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from reconciler.core.exceptions import ProviderMalformedError
from reconciler.pipeline.types import (
    CandidateRecord,
    ExtractedItem,
    MenuLine,
    PhotoItem,
)
from reconciler.services.menus.base import BaseMenuSource
from reconciler.services.places.base import BasePlaceSearchProvider
from reconciler.services.rate_limit import RateLimitedClient

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


@dataclass
class Extraction:
    """Items of one record plus the record as refreshed by the detail call."""
    record: CandidateRecord
    items: list[ExtractedItem] = field(default_factory=list)


class ExtractionAdapter(ABC):
    """
    Base class of the extraction adapters.

    Attributes:
        client: Rate-limited client shared with the rest of the run
        max_items: Cap on items returned per record
    """

    def __init__(self, client: RateLimitedClient, max_items: int):
        if max_items < 1:
            raise ValueError("max_items must be at least 1")
        self.client = client
        self.max_items = max_items

    async def extract(self, record: CandidateRecord) -> list[ExtractedItem]:
        """Return the ordered, capped items of a matched record."""
        return (await self.extract_full(record)).items

    @abstractmethod
    async def extract_full(self, record: CandidateRecord) -> Extraction:
        """Like `extract`, also returning the refreshed record."""
        pass


# =============================================================================
# PHOTOS
# =============================================================================

class PhotoExtractionAdapter(ExtractionAdapter):
    """
    Photo set of a place, from its details.

    Photo URLs come from the provider and never carry the API key.
    """

    def __init__(
        self,
        provider: BasePlaceSearchProvider,
        client: RateLimitedClient,
        max_items: int = 5,
        max_width: int = 1600,
    ):
        super().__init__(client, max_items)
        self.provider = provider
        self.max_width = max_width

    async def extract_full(self, record: CandidateRecord) -> Extraction:
        details = await self.client.fetch(
            lambda: self.provider.details(record.external_id),
            description=f"details {record.external_id}",
        )

        if details.photos:
            photos = [(p.reference, p.width, p.height) for p in details.photos]
        else:
            photos = [(ref, None, None) for ref in record.photo_refs]

        items: list[ExtractedItem] = [
            PhotoItem(
                source_url=self.provider.photo_url(reference, self.max_width),
                width=width,
                height=height,
                reference=reference,
            )
            for reference, width, height in photos[:self.max_items]
        ]

        logger.debug(
            f"Photos for {record.external_id}: {len(photos)} available, {len(items)} kept"
        )
        return Extraction(record=_merge_records(record, details.record), items=items)


def _merge_records(base: CandidateRecord, fresh: CandidateRecord) -> CandidateRecord:
    """Overlay the non-empty fields of `fresh` onto `base`."""
    changes = {
        name: getattr(fresh, name)
        for name in ("display_name", "address", "rating", "review_count",
                     "phone", "photo_refs", "geo")
        if getattr(fresh, name) not in (None, "", ())
    }
    return replace(base, **changes)


# =============================================================================
# MENUS
# =============================================================================

_PRICE_CHARS_RE = re.compile(r"[^\d.,\-]")


def parse_price(value: Any, minor_units: bool = False) -> Optional[Decimal]:
    """
    Parse a provider price into a decimal in major currency units.

    Accepts numbers and strings carrying currency symbols, thousands
    separators or a comma decimal separator. With both "," and "." present
    the rightmost one is the decimal separator. Returns None when the value
    cannot be read as a price.

    >>> parse_price("€12,50")
    Decimal('12.50')
    >>> parse_price(650, minor_units=True)
    Decimal('6.50')
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float, Decimal)):
        text = str(value)
    elif isinstance(value, str):
        text = _PRICE_CHARS_RE.sub("", value)
        if "," in text and "." in text:
            # The rightmost separator is the decimal one
            if text.rfind(",") > text.rfind("."):
                text = text.replace(".", "").replace(",", ".")
            else:
                text = text.replace(",", "")
        elif "," in text:
            text = text.replace(",", ".")
    else:
        return None

    try:
        price = Decimal(text)
    except InvalidOperation:
        return None
    if not price.is_finite():
        return None

    if minor_units:
        price = price / 100
    return price.quantize(CENT)


def _image_url(item: dict) -> Optional[str]:
    image = item.get("image") or item.get("image_url")
    if isinstance(image, list):
        image = image[0] if image else None
    if isinstance(image, dict):
        image = image.get("url")
    return image if isinstance(image, str) and image else None


class MenuExtractionAdapter(ExtractionAdapter):
    """
    Menu lines of a venue, from the menu source detail blob.

    Supported blob layouts:
        menu.categories[].items[]              items nested in categories
        menu.items[] (+ menu.categories[])     flat items referencing a
                                               category by id or name

    Prices come as `baseprice` in minor units or as `price` in major units.
    Lines without a name or with a negative or unreadable price are dropped
    with a warning; a blob of the wrong shape raises ProviderMalformedError.
    """

    def __init__(
        self,
        source: BaseMenuSource,
        client: RateLimitedClient,
        max_items: int = 500,
        default_currency: str = "EUR",
    ):
        super().__init__(client, max_items)
        self.source = source
        self.default_currency = default_currency

    async def extract_full(self, record: CandidateRecord) -> Extraction:
        blob = await self.client.fetch(
            lambda: self.source.fetch_detail(record.external_id),
            description=f"menu {record.external_id}",
        )
        items = self.parse_menu(blob, ref=record.external_id)
        return Extraction(record=self._enrich(record, blob), items=items)

    def _enrich(self, record: CandidateRecord, blob: dict) -> CandidateRecord:
        changes = {}
        for field_name, key in (("address", "address"), ("phone", "phone")):
            value = blob.get(key)
            if isinstance(value, str) and value.strip() and not getattr(record, field_name):
                changes[field_name] = value.strip()
        return replace(record, **changes) if changes else record

    def parse_menu(self, blob: Any, ref: str = "") -> list[ExtractedItem]:
        """Normalize a detail blob into at most `max_items` MenuLines."""
        if not isinstance(blob, dict):
            raise ProviderMalformedError(f"menu blob for {ref} is not an object")

        menu = blob.get("menu")
        if menu is None:
            return []
        if not isinstance(menu, dict):
            raise ProviderMalformedError(f"menu of {ref} is not an object")

        currency = blob.get("currency") or self.default_currency
        lines: list[ExtractedItem] = []
        dropped = 0

        for raw, category in self._iter_items(menu, ref):
            line = self._to_line(raw, category, currency)
            if line is None:
                dropped += 1
                logger.warning(f"Dropped menu line of {ref}: {str(raw)[:120]}")
                continue
            lines.append(line)

        if dropped:
            logger.warning(f"{ref}: {dropped} menu line(s) dropped")
        if len(lines) > self.max_items:
            logger.info(f"{ref}: capping {len(lines)} menu lines to {self.max_items}")
        return lines[:self.max_items]

    def _iter_items(self, menu: dict, ref: str):
        categories = menu.get("categories") or []
        if not isinstance(categories, list):
            raise ProviderMalformedError(f"menu categories of {ref} are not a list")

        flat_items = menu.get("items")
        if flat_items is not None:
            if not isinstance(flat_items, list):
                raise ProviderMalformedError(f"menu items of {ref} are not a list")
            names = {
                c.get("id"): c.get("name")
                for c in categories
                if isinstance(c, dict) and c.get("id") is not None
            }
            for raw in flat_items:
                category = raw.get("category") if isinstance(raw, dict) else None
                if not isinstance(category, (str, int)):
                    category = None
                yield raw, names.get(category, category)
            return

        for category in categories:
            if not isinstance(category, dict):
                raise ProviderMalformedError(f"menu category of {ref} is not an object")
            items = category.get("items") or []
            if not isinstance(items, list):
                raise ProviderMalformedError(f"items of a {ref} category are not a list")
            for raw in items:
                yield raw, category.get("name")

    def _to_line(self, raw: Any, category: Any, currency: str) -> Optional[MenuLine]:
        if not isinstance(raw, dict):
            return None

        name = raw.get("name")
        if not isinstance(name, str) or not name.strip():
            return None

        if raw.get("baseprice") is not None:
            price = parse_price(raw["baseprice"], minor_units=True)
        else:
            price = parse_price(raw.get("price"))
        if price is None or price < 0:
            return None

        description = raw.get("description")
        if not isinstance(description, str) or not description.strip():
            description = None
        return MenuLine(
            name=name.strip(),
            price=price,
            currency=raw.get("currency") or currency,
            description=description.strip() if description else None,
            category=category if isinstance(category, str) and category else None,
            image_url=_image_url(raw),
        )
