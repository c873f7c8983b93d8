"""
Storefront test data: static catalog seed, currencies, checkout fixtures,
and the DataSource that draws request template variables from them.

Product ids are the Online Boutique catalog (productcatalogservice
products.json); they are only the fallback when the home page yields none.
"""

import random
from typing import Any, Callable, Dict, Optional, Sequence

from faker import Faker

from storefront_load.session import Session

PRODUCTS = [
    {"id": "OLJCESPC7Z", "name": "Sunglasses", "price": 19.99},
    {"id": "66VCHSJNUP", "name": "Tank Top", "price": 18.99},
    {"id": "1YMWWN1N4O", "name": "Watch", "price": 109.99},
    {"id": "L9ECAV7KIM", "name": "Loafers", "price": 89.99},
    {"id": "2ZYFJ3GM2N", "name": "Hairdryer", "price": 24.99},
    {"id": "0PUK6V6EV0", "name": "Candle Holder", "price": 18.99},
    {"id": "LS4PSXUNUM", "name": "Salt & Pepper Shakers", "price": 18.49},
    {"id": "9SIQT8TOJO", "name": "Bamboo Glass Jar", "price": 5.49},
    {"id": "6E92ZMYYFZ", "name": "Mug", "price": 8.99},
]

PRODUCT_IDS = [p["id"] for p in PRODUCTS]

CURRENCIES = ["USD", "EUR", "GBP", "JPY", "CAD", "CHF"]

ADDRESSES = [
    {
        "street_address": "1600 Amphitheatre Pkwy",
        "zip_code": "94043",
        "city": "Mountain View",
        "state": "CA",
        "country": "United States",
    },
    {
        "street_address": "221B Baker Street",
        "zip_code": "NW1 6XE",
        "city": "London",
        "state": "England",
        "country": "United Kingdom",
    },
    {
        "street_address": "350 Fifth Avenue",
        "zip_code": "10118",
        "city": "New York",
        "state": "NY",
        "country": "United States",
    },
]

# Test cards, only meaningful against the mock payment service
CREDIT_CARDS = [
    {"number": "4432-8015-6152-0454", "month": "1", "year": "2030", "cvv": "672"},
    {"number": "4111111111111111", "month": "6", "year": "2028", "cvv": "123"},
    {"number": "5500005555555559", "month": "12", "year": "2027", "cvv": "456"},
]


class DataSource:
    """
    Draws values for template placeholders.

    Every draw goes through the injected `rng` (and a Faker seeded from it),
    so a seeded run renders the same requests.
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        fallback_ids: Optional[Sequence[str]] = None,
        faker: Optional[Faker] = None,
    ):
        self.rng = rng or random.Random()
        self.fallback_ids = list(fallback_ids) if fallback_ids else list(PRODUCT_IDS)
        if faker is None:
            faker = Faker()
            faker.seed_instance(self.rng.getrandbits(32))
        self.faker = faker
        self._generators: Dict[str, Callable[[Session], Any]] = {
            "product_id": self.product_id,
            "quantity": lambda session: str(self.rng.randint(1, 3)),
            "currency_code": lambda session: self.rng.choice(CURRENCIES),
            "checkout_form": self.checkout_form,
        }

    def names(self):
        return sorted(self._generators)

    def draw(self, name: str, session: Session) -> Any:
        try:
            generator = self._generators[name]
        except KeyError:
            raise KeyError(f"No data generator for placeholder {name!r}") from None
        return generator(session)

    def product_id(self, session: Session) -> str:
        pool = session.discovered_ids or self.fallback_ids
        return self.rng.choice(pool)

    def checkout_form(self, session: Session) -> Dict[str, str]:
        address = self.rng.choice(ADDRESSES)
        card = self.rng.choice(CREDIT_CARDS)
        return {
            "email": self.faker.email(),
            "street_address": address["street_address"],
            "zip_code": address["zip_code"],
            "city": address["city"],
            "state": address["state"],
            "country": address["country"],
            "credit_card_number": card["number"],
            "credit_card_expiration_month": card["month"],
            "credit_card_expiration_year": card["year"],
            "credit_card_cvv": card["cvv"],
        }
