"""
Tests for photo and menu extraction.

Validates:
- Price parsing (symbols, separators, minor units, garbage)
- Both menu blob layouts, dropped lines and malformed blobs
- Item caps and provider order
- Photo URLs built without the API key
"""

from decimal import Decimal

import pytest

from reconciler.core.exceptions import ProviderMalformedError, ProviderNotFoundError
from reconciler.pipeline.extraction import (
    MenuExtractionAdapter,
    PhotoExtractionAdapter,
    parse_price,
)
from reconciler.pipeline.types import CandidateRecord, MenuLine, PhotoItem, PlaceDetails
from reconciler.services.menus.mock import MockMenuSource
from reconciler.services.rate_limit import RateLimitedClient


@pytest.fixture
def client(sleep):
    return RateLimitedClient(max_retries=3, retry_delay=0.0, inter_request_delay=0.2, sleep=sleep)


# ── Prices ────────────────────────────────────────────────────────────

class TestParsePrice:

    @pytest.mark.parametrize("value,expected", [
        ("€12,50", Decimal("12.50")),
        ("12.5", Decimal("12.50")),
        ("EUR 1,234.50", Decimal("1234.50")),
        ("€1.234,50", Decimal("1234.50")),
        ("1.234.567,89", Decimal("1234567.89")),
        ("1,234,567.89", Decimal("1234567.89")),
        (7, Decimal("7.00")),
        (3.456, Decimal("3.46")),
        ("0", Decimal("0.00")),
        ("-2", Decimal("-2.00")),
    ])
    def test_major_units(self, value, expected):
        assert parse_price(value) == expected

    def test_minor_units(self):
        assert parse_price(650, minor_units=True) == Decimal("6.50")
        assert parse_price("1450", minor_units=True) == Decimal("14.50")

    @pytest.mark.parametrize("value", [None, True, "", "free", float("nan"), float("inf"), [1]])
    def test_unreadable(self, value):
        assert parse_price(value) is None


# ── Menus ─────────────────────────────────────────────────────────────

class TestParseMenu:

    def setup_method(self):
        self.adapter = MenuExtractionAdapter(MockMenuSource(), client=None, max_items=500)

    def test_nested_categories(self):
        blob = {
            "currency": "EUR",
            "menu": {"categories": [
                {"name": "Wines", "items": [
                    {"name": "House Red", "baseprice": 650, "description": "Gellewza, 2022"},
                ]},
                {"name": "Platters", "items": [{"name": "Maltese Platter", "baseprice": 1450}]},
            ]},
        }
        lines = self.adapter.parse_menu(blob, ref="trabuxu")
        assert lines == [
            MenuLine(name="House Red", price=Decimal("6.50"), currency="EUR",
                     description="Gellewza, 2022", category="Wines"),
            MenuLine(name="Maltese Platter", price=Decimal("14.50"), currency="EUR",
                     category="Platters"),
        ]

    def test_flat_items_with_category_lookup(self):
        blob = {"menu": {
            "categories": [{"id": "c1", "name": "Drinks"}],
            "items": [
                {"name": "Kinnie", "price": "2.50", "category": "c1",
                 "image": {"url": "https://img.example/kinnie.jpg"}},
                {"name": "Cisk", "price": 3, "category": "Beer"},
                {"name": "Mystery", "price": 4, "category": {"id": "c1"}},
            ],
        }}
        lines = self.adapter.parse_menu(blob)
        assert [(l.name, l.category) for l in lines] == [
            ("Kinnie", "Drinks"), ("Cisk", "Beer"), ("Mystery", None),
        ]
        assert lines[0].image_url == "https://img.example/kinnie.jpg"
        assert lines[0].currency == "EUR"

    def test_bad_lines_dropped(self):
        blob = {"menu": {"categories": [{"name": "Mains", "items": [
            {"name": "Rabbit Stew", "baseprice": 1600},
            {"name": "", "baseprice": 100},
            {"name": "No Price"},
            {"name": "Negative", "price": -1},
            {"name": "Garbage", "price": "ask the waiter"},
            "not an object",
        ]}]}}
        lines = self.adapter.parse_menu(blob)
        assert [l.name for l in lines] == ["Rabbit Stew"]

    def test_zero_price_kept(self):
        blob = {"menu": {"items": [{"name": "Tap Water", "price": 0}]}}
        assert self.adapter.parse_menu(blob)[0].price == Decimal("0.00")

    def test_item_currency_overrides_blob(self):
        blob = {"currency": "EUR", "menu": {"items": [{"name": "Pint", "price": 5, "currency": "GBP"}]}}
        assert self.adapter.parse_menu(blob)[0].currency == "GBP"

    def test_missing_menu_is_empty(self):
        assert self.adapter.parse_menu({"name": "Empty Kitchen"}) == []

    @pytest.mark.parametrize("blob", [
        ["not", "an", "object"],
        {"menu": "oops"},
        {"menu": {"categories": "oops"}},
        {"menu": {"items": {"name": "x"}}},
        {"menu": {"categories": ["oops"]}},
        {"menu": {"categories": [{"name": "Mains", "items": "oops"}]}},
    ])
    def test_malformed_blobs(self, blob):
        with pytest.raises(ProviderMalformedError):
            self.adapter.parse_menu(blob)

    def test_cap_keeps_first_items(self):
        adapter = MenuExtractionAdapter(MockMenuSource(), client=None, max_items=2)
        blob = {"menu": {"items": [{"name": f"Item {i}", "price": i} for i in range(5)]}}
        assert [l.name for l in adapter.parse_menu(blob)] == ["Item 0", "Item 1"]


class TestMenuExtraction:

    @pytest.mark.asyncio
    async def test_extracts_mock_menu(self, client):
        adapter = MenuExtractionAdapter(MockMenuSource(), client)
        record = CandidateRecord(external_id="trabuxu-bistro", display_name="Trabuxu Bistro")
        items = await adapter.extract(record)
        assert [i.name for i in items] == [
            "House Red", "Gellewza Rosé", "Maltese Platter", "Cheese Board",
        ]
        assert items[2].price == Decimal("14.50")

    @pytest.mark.asyncio
    async def test_enriches_record_from_blob(self, client):
        source = MockMenuSource(menus={"tortuga": {
            "name": "Tortuga",
            "address": "St George's Bay",
            "phone": "+356 9999 0000",
            "menu": {"items": [{"name": "Mojito", "price": 9}]},
        }})
        adapter = MenuExtractionAdapter(source, client)
        extraction = await adapter.extract_full(
            CandidateRecord(external_id="tortuga", display_name="Tortuga")
        )
        assert extraction.record.address == "St George's Bay"
        assert extraction.record.phone == "+356 9999 0000"

    @pytest.mark.asyncio
    async def test_unknown_venue_raises_not_found(self, client):
        adapter = MenuExtractionAdapter(MockMenuSource(), client)
        with pytest.raises(ProviderNotFoundError):
            await adapter.extract(CandidateRecord(external_id="nope", display_name="Nope"))

    def test_rejects_zero_cap(self, client):
        with pytest.raises(ValueError):
            MenuExtractionAdapter(MockMenuSource(), client, max_items=0)


# ── Photos ────────────────────────────────────────────────────────────

class TestPhotoExtraction:

    @pytest.mark.asyncio
    async def test_caps_photos_in_provider_order(self, client, place_provider):
        adapter = PhotoExtractionAdapter(place_provider, client, max_items=5)
        record = CandidateRecord(external_id="mock-tortuga", display_name="Tortuga")
        items = await adapter.extract(record)
        assert len(items) == 5
        assert all(isinstance(i, PhotoItem) for i in items)
        assert [i.reference for i in items] == [f"mock-tortuga-photo-{n}" for n in range(5)]
        assert items[0].width == 1600

    @pytest.mark.asyncio
    async def test_urls_never_carry_a_key(self, client, place_provider):
        adapter = PhotoExtractionAdapter(place_provider, client, max_width=800)
        items = await adapter.extract(CandidateRecord(external_id="mock-trabuxu", display_name="x"))
        assert items[0].source_url == "https://mock.places.local/photo/mock-trabuxu-photo-0?maxwidth=800"
        assert not any("key=" in i.source_url for i in items)

    @pytest.mark.asyncio
    async def test_falls_back_to_record_photo_refs(self, client, place_provider):
        bare = CandidateRecord(external_id="bare", display_name="Bare", photo_refs=("r1", "r2"))
        place_provider.add_place(PlaceDetails(record=bare, photos=()))
        items = await PhotoExtractionAdapter(place_provider, client).extract(bare)
        assert [i.reference for i in items] == ["r1", "r2"]
        assert items[0].width is None

    @pytest.mark.asyncio
    async def test_no_photos_is_empty(self, client, place_provider):
        adapter = PhotoExtractionAdapter(place_provider, client)
        record = CandidateRecord(external_id="mock-white-tower", display_name="White Tower Lido")
        assert await adapter.extract(record) == []

    @pytest.mark.asyncio
    async def test_refreshes_record_from_details(self, client, place_provider):
        adapter = PhotoExtractionAdapter(place_provider, client)
        extraction = await adapter.extract_full(
            CandidateRecord(external_id="mock-kings-pub", display_name="Kings Pub")
        )
        assert extraction.record.address == "Triq il-Wied, Mellieha"
        assert extraction.record.rating == 4.1
        assert extraction.record.geo is not None
