"""
Billboard and field team test factories.
"""

import factory
from faker import Faker
from datetime import date, timedelta

fake = Faker()

SIZES = ["12x4", "10x4", "8x3", "6x3", "4x3"]
CITIES = ["Tripoli", "Benghazi", "Misrata", "Zawiya", "Sabha"]


class BillboardFactory(factory.Factory):
    """
    Factory for generating Billboard column data.

    Defaults describe a billboard whose rental just ended.
    """

    class Meta:
        model = dict

    id = factory.Sequence(lambda n: n + 1)
    name = factory.LazyAttribute(lambda obj: f"BB-{obj.id:04d}")
    size = factory.LazyFunction(lambda: fake.random_element(SIZES))
    city = factory.LazyFunction(lambda: fake.random_element(CITIES))
    municipality = factory.LazyFunction(fake.city)
    status = "rented"
    contract_number = None
    customer_name = None
    ad_type = None
    rent_start_date = factory.LazyFunction(lambda: date.today() - timedelta(days=100))
    rent_end_date = factory.LazyFunction(lambda: date.today() - timedelta(days=fake.random_int(min=1, max=30)))
    has_cutout = False


class TeamFactory(factory.Factory):
    """Installation team column data; ``cities=[]`` services every city."""

    class Meta:
        model = dict

    id = factory.Sequence(lambda n: n + 1)
    team_name = factory.LazyFunction(lambda: f"Team {fake.last_name()}")
    sizes = factory.LazyFunction(lambda: ["12x4"])
    cities = factory.LazyFunction(list)
