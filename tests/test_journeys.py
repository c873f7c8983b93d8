"""Tests for the journey catalog, request templates and weighted selection."""

import random
from collections import Counter

import pytest

from storefront_load.data import PRODUCT_IDS, DataSource
from storefront_load.exceptions import CatalogError
from storefront_load.journeys import (
    DEFAULT_WEIGHTS,
    Journey,
    JourneyCatalog,
    RequestTemplate,
    Step,
    select_journey,
    storefront_catalog,
)
from storefront_load.metrics import MetricType
from storefront_load.session import Session


def _journey(name, weight=1.0):
    return Journey(name, (Step(name, RequestTemplate("GET", "/")),), weight=weight)


class TestSelection:
    @pytest.mark.parametrize("weights", [
        DEFAULT_WEIGHTS,
        {"browse": 1, "add_to_cart": 1, "checkout": 1, "currency": 1},
        {"browse": 5, "add_to_cart": 0, "checkout": 15, "currency": 0},
    ])
    def test_distribution_converges_to_weights(self, weights):
        catalog = storefront_catalog(weights)
        rng = random.Random(2024)
        n = 10_000
        counts = Counter(select_journey(catalog, rng).name for _ in range(n))
        for name, probability in catalog.probabilities().items():
            assert abs(counts[name] / n - probability) < 0.03, name

    def test_zero_weight_never_selected(self):
        catalog = JourneyCatalog([_journey("a", 0.0), _journey("b", 1.0), _journey("c", 0.0)])
        rng = random.Random(1)
        assert {select_journey(catalog, rng).name for _ in range(1000)} == {"b"}

    def test_seeded_selection_is_reproducible(self):
        catalog = storefront_catalog()
        first = [select_journey(catalog, random.Random(7)).name for _ in range(5)]
        second = [select_journey(catalog, random.Random(7)).name for _ in range(5)]
        assert first == second


class TestCatalog:
    def test_empty_catalog(self):
        with pytest.raises(CatalogError):
            JourneyCatalog([])

    def test_weights_must_sum_positive(self):
        with pytest.raises(CatalogError):
            JourneyCatalog([_journey("a", 0.0), _journey("b", 0.0)])

    def test_negative_weight(self):
        with pytest.raises(CatalogError):
            _journey("a", -1.0)

    def test_duplicate_names(self):
        with pytest.raises(CatalogError):
            JourneyCatalog([_journey("a"), _journey("a")])

    def test_journey_needs_steps(self):
        with pytest.raises(CatalogError):
            Journey("empty", ())

    def test_with_weights_rejects_unknown_journey(self):
        with pytest.raises(CatalogError):
            storefront_catalog().with_weights({"wishlist": 1.0})

    def test_only(self):
        catalog = storefront_catalog().only("checkout")
        assert catalog.names == ["checkout"]
        assert catalog.probabilities() == {"checkout": 1.0}

    def test_storefront_step_order(self):
        catalog = storefront_catalog()
        steps = {j.name: [s.label for s in j.steps] for j in catalog}
        assert steps == {
            "browse": ["home", "product"],
            "add_to_cart": ["home", "product", "add_to_cart", "view_cart"],
            "checkout": ["home", "product", "add_to_cart", "view_cart", "checkout"],
            "currency": ["home", "set_currency", "product"],
        }
        assert catalog.get("browse").steps[1].repeat == (1, 3)

    def test_default_mix(self):
        assert storefront_catalog().probabilities() == pytest.approx(
            {"browse": 0.4, "add_to_cart": 0.3, "checkout": 0.2, "currency": 0.1}
        )

    def test_custom_metrics(self):
        assert storefront_catalog().custom_metrics() == {
            "cart_errors": MetricType.COUNTER,
            "checkout_errors": MetricType.COUNTER,
            "checkout_success_rate": MetricType.RATE,
            "checkout_duration": MetricType.TREND,
        }

    def test_to_dict(self):
        data = storefront_catalog().get("checkout").to_dict()
        assert data["name"] == "checkout"
        assert data["steps"][-1]["path"] == "/cart/checkout"


class TestRequestTemplate:
    def test_placeholders(self):
        template = RequestTemplate("POST", "/cart", form={"product_id": "{product_id}", "quantity": "{quantity}"})
        assert template.placeholders() == ["product_id", "quantity"]

    def test_render_binds_values_for_later_steps(self):
        session = Session(discovered_ids=["AAAAAAAAAA"])
        data = DataSource(random.Random(3))
        view = RequestTemplate("GET", "/product/{product_id}").render(session, data, {"step": "product"})
        add = RequestTemplate("POST", "/cart", form={"product_id": "{product_id}"}).render(session, data)

        assert view.path == "/product/AAAAAAAAAA"
        assert view.tags == {"step": "product"}
        assert add.form == {"product_id": "AAAAAAAAAA"}

    def test_product_id_falls_back_to_static_list(self):
        descriptor = RequestTemplate("GET", "/product/{product_id}").render(Session(), DataSource(random.Random(3)))
        assert descriptor.path[len("/product/"):] in PRODUCT_IDS

    def test_form_fixture(self):
        template = RequestTemplate("POST", "/cart/checkout", form_fixture="checkout_form")
        descriptor = template.render(Session(), DataSource(random.Random(3)))
        assert "@" in descriptor.form["email"]
        assert descriptor.form["credit_card_number"]

    def test_unknown_placeholder(self):
        with pytest.raises(KeyError):
            RequestTemplate("GET", "/x/{nope}").render(Session(), DataSource(random.Random(3)))
