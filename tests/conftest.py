from datetime import date

import pytest

from trekbook.db import FlatFileStore
from trekbook.models import Attraction, Guide, Tourist
from trekbook.service import TrekDesk

TODAY = date(2024, 6, 1)


def make_guide(username="guide1", **kw) -> Guide:
    data = dict(
        username=username, password="x", full_name="Ram Sharma", email="ram@guide.com",
        phone="1234567890", languages=["English", "Nepali"], experience_years=5,
    )
    data.update(kw)
    return Guide(**data)


def make_tourist(username="hiker", **kw) -> Tourist:
    data = dict(
        username=username, password="x", full_name="Ana Lopez", email="ana@mail.com",
        phone="5551234567", nationality="Ecuador",
    )
    data.update(kw)
    return Tourist(**data)


@pytest.fixture
def store(tmp_path) -> FlatFileStore:
    return FlatFileStore(tmp_path / "data")


@pytest.fixture
def desk(store) -> TrekDesk:
    d = TrekDesk(store)
    d.catalog.attractions = {
        "Everest Base Camp": Attraction(name="Everest Base Camp", location="Khumbu", altitude_level="High",
                                        difficulty="Hard", base_price=1200.0),
        "Pokhara Sightseeing": Attraction(name="Pokhara Sightseeing", location="Pokhara", base_price=150.0,
                                          max_capacity=2),
    }
    d.catalog.guides = {"guide1": make_guide(), "guide2": make_guide("guide2", full_name="Sita Gurung")}
    d.catalog.tourists = {"hiker": make_tourist(), "walker": make_tourist("walker")}
    return d
