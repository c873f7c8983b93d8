"""Tests for test-data generation."""

import random

from storefront_load.data import CURRENCIES, PRODUCT_IDS, DataSource
from storefront_load.session import Session


class TestDataSource:
    def test_seeded_draws_repeat(self):
        session = Session()
        a = DataSource(random.Random(11))
        b = DataSource(random.Random(11))
        assert a.checkout_form(session) == b.checkout_form(session)
        assert [a.draw("quantity", session) for _ in range(10)] == [b.draw("quantity", session) for _ in range(10)]

    def test_quantity_range(self):
        data = DataSource(random.Random(1))
        values = {data.draw("quantity", Session()) for _ in range(200)}
        assert values == {"1", "2", "3"}

    def test_currency(self):
        data = DataSource(random.Random(1))
        assert data.draw("currency_code", Session()) in CURRENCIES

    def test_product_id_prefers_discovered(self):
        data = DataSource(random.Random(1))
        session = Session(discovered_ids=["ZZZZZZZZZZ"])
        assert data.draw("product_id", session) == "ZZZZZZZZZZ"
        assert data.draw("product_id", Session()) in PRODUCT_IDS

    def test_custom_fallback(self):
        data = DataSource(random.Random(1), fallback_ids=["ONLYONE123"])
        assert data.draw("product_id", Session()) == "ONLYONE123"

    def test_names(self):
        assert DataSource(random.Random(1)).names() == ["checkout_form", "currency_code", "product_id", "quantity"]
