from datetime import date

import pytest

from conftest import TODAY, make_guide
from trekbook.db import (
    FlatFileStore,
    decode_attraction,
    decode_booking,
    decode_guide,
    encode_booking,
    encode_guide,
)
from trekbook.errors import ConsistencyWarning, PersistenceError, ValidationError
from trekbook.models import BookingStatus
from trekbook.service import TrekDesk

ATTRACTIONS = (
    "Everest Base Camp%%%Khumbu%%%High%%%Hard%%%1200.0\n"
    "Pokhara Sightseeing%%%Pokhara%%%Low%%%Easy%%%150.0\n"
)
GUIDES = "guide1%%%hash%%%Ram Sharma%%%ram@guide.com%%%1234567890%%%English,Nepali%%%5\n"


def write(store, collection, text):
    store.path_for(collection).write_text(text, encoding="utf-8")


def test_missing_files_load_as_empty(store):
    catalog = store.load_all()
    assert catalog.tourists == {} and catalog.bookings == {}
    assert catalog.next_booking_id == 1
    assert catalog.report.ok


def test_base_layout_lines_decode_with_defaults():
    g = decode_guide(GUIDES.strip())
    assert g.languages == ["English", "Nepali"]
    assert g.available and g.specializations == []
    a = decode_attraction("Everest Base Camp%%%Khumbu%%%High%%%Hard%%%1200.0", default_capacity=12)
    assert a.max_capacity == 12
    assert a.base_price == 1200.0


def test_empty_guide_field_means_no_guide(store):
    write(store, "attractions", ATTRACTIONS)
    write(store, "bookings",
          "1%%%hiker%%%%%%Everest Base Camp%%%2024-09-15%%%Confirmed%%%960.0%%%true\n")
    catalog = store.load_all()
    b = catalog.bookings[1]
    assert b.guide_username is None
    assert b.total_price == 960.0
    assert catalog.attractions["Everest Base Camp"].current_bookings == 1


def test_unknown_attraction_is_dropped_and_load_continues(store):
    write(store, "attractions", ATTRACTIONS)
    write(store, "guides", GUIDES)
    write(store, "bookings",
          "1%%%hiker%%%guide1%%%Kanchenjunga%%%2024-09-15%%%Pending%%%1248.0%%%true\n"
          "2%%%hiker%%%guide1%%%Pokhara Sightseeing%%%2024-05-10%%%Confirmed%%%195.0%%%false\n")
    with pytest.warns(ConsistencyWarning, match="Kanchenjunga"):
        catalog = store.load_all()
    assert list(catalog.bookings) == [2]
    assert len(catalog.report.warnings) == 1
    assert "Kanchenjunga" in catalog.report.warnings[0]
    assert catalog.next_booking_id == 3


def test_unknown_guide_is_cleared(store):
    write(store, "attractions", ATTRACTIONS)
    write(store, "bookings",
          "4%%%hiker%%%retired%%%Pokhara Sightseeing%%%2024-05-10%%%Pending%%%195.0%%%false\n")
    catalog = store.load_all()
    assert catalog.bookings[4].guide_username is None
    assert catalog.bookings[4].total_price == 150.0
    assert catalog.report.ok


def test_unknown_guide_drops_guide_fee_from_total(store):
    write(store, "attractions", ATTRACTIONS)
    write(store, "bookings",
          "1%%%hiker%%%retired%%%Everest Base Camp%%%2024-09-15%%%Pending%%%1248.0%%%true\n")
    b = store.load_all().bookings[1]
    assert b.total_price == 960.0
    assert b.festival_discount_applied
    assert b.guide_commission == 0.0


def test_sequence_skips_ids_of_dropped_records(store):
    write(store, "attractions", ATTRACTIONS)
    write(store, "bookings",
          "2%%%hiker%%%%%%Pokhara Sightseeing%%%2024-05-10%%%Pending%%%150.0%%%false\n"
          "9%%%hiker%%%%%%Kanchenjunga%%%2024-09-15%%%Pending%%%960.0%%%true\n"
          "12%%%hiker%%%%%%Everest Base Camp%%%15/09/2024%%%Pending%%%960.0%%%true\n")
    with pytest.warns(ConsistencyWarning):
        catalog = store.load_all()
    assert list(catalog.bookings) == [2]
    assert catalog.next_booking_id == 13


@pytest.mark.parametrize("line", [
    "x%%%hiker%%%%%%Everest Base Camp%%%2024-09-15%%%Pending%%%960.0%%%true",
    "1%%%hiker%%%%%%Everest Base Camp%%%15/09/2024%%%Pending%%%960.0%%%true",
    "1%%%hiker%%%%%%Everest Base Camp%%%2024-09-15%%%Lost%%%960.0%%%true",
    "1%%%hiker%%%%%%Everest Base Camp%%%2024-09-15%%%Pending%%%cheap%%%true",
    "1%%%hiker%%%%%%Everest Base Camp%%%2024-09-15%%%Pending%%%960.0%%%maybe",
    "1%%%hiker%%%Everest Base Camp",
])
def test_malformed_booking_lines_are_skipped(store, line):
    write(store, "attractions", ATTRACTIONS)
    write(store, "bookings",
          line + "\n2%%%hiker%%%%%%Everest Base Camp%%%2024-10-01%%%Pending%%%960.0%%%true\n")
    catalog = store.load_all()
    assert list(catalog.bookings) == [2]
    assert len(catalog.report.errors) == 1


def test_malformed_decoders_raise():
    with pytest.raises(ValidationError):
        decode_booking("1%%%2%%%3")
    with pytest.raises(ValueError):
        decode_attraction("K2%%%Karakoram%%%Extreme%%%Hard%%%5000.0")


def test_rebuild_guide_ledger_on_load(store):
    write(store, "attractions", ATTRACTIONS)
    write(store, "guides", GUIDES)
    write(store, "bookings",
          "1%%%hiker%%%guide1%%%Everest Base Camp%%%2024-09-15%%%Confirmed%%%1248.0%%%true\n"
          "2%%%hiker%%%guide1%%%Everest Base Camp%%%2024-09-20%%%Pending%%%1248.0%%%true\n"
          "3%%%hiker%%%guide1%%%Pokhara Sightseeing%%%2024-05-10%%%Completed%%%195.0%%%false\n"
          "4%%%hiker%%%guide1%%%Pokhara Sightseeing%%%2024-05-12%%%Cancelled%%%195.0%%%false\n")
    guide = store.load_all().guides["guide1"]
    assert guide.assigned_bookings == [1]
    assert guide.total_earnings == 288.0 + 45.0


def test_save_then_load_round_trips(store):
    store.initialize()
    desk = TrekDesk(store)
    desk.register_tourist("hiker", "Secret#123", "Secret#123", "Ana Lopez", "ana@mail.com",
                          "5551234567", "Ecuador")
    desk.update_guide_profile("guide1", bio="Khumbu local", specializations=["High altitude"])
    b1 = desk.create_booking("hiker", "Everest Base Camp", date(2024, 9, 15), "guide1",
                             notes="vegetarian", today=TODAY).entity
    desk.confirm_booking(b1.booking_id)
    b2 = desk.create_booking("hiker", "Pokhara Sightseeing", date(2024, 12, 1), today=TODAY).entity
    desk.cancel_booking(b2.booking_id, today=TODAY)
    desk.persist_all()

    reloaded = TrekDesk(store).catalog
    assert reloaded.tourists == desk.catalog.tourists
    assert reloaded.guides == desk.catalog.guides
    assert reloaded.attractions == desk.catalog.attractions
    assert reloaded.bookings == desk.catalog.bookings
    assert reloaded.next_booking_id == desk.catalog.next_booking_id


def test_save_rewrites_whole_file(store):
    store.initialize()
    assert len(store.load_attractions()) == 3
    store.save_attractions(store.load_attractions()[:1])
    lines = store.path_for("attractions").read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    assert [a.name for a in store.load_attractions()] == ["Everest Base Camp"]


def test_encoding_rejects_delimiter():
    with pytest.raises(ValidationError):
        encode_guide(make_guide(bio="a%%%b"))


def test_booking_line_layout():
    b = decode_booking("7%%%hiker%%%guide1%%%Everest Base Camp%%%2024-09-15%%%Confirmed%%%1248.0%%%true")
    fields = encode_booking(b).split("%%%")
    assert fields[:8] == ["7", "hiker", "guide1", "Everest Base Camp", "2024-09-15", "Confirmed",
                          "1248.0", "true"]
    assert b.status == BookingStatus.CONFIRMED


def test_save_failure_is_reported(tmp_path):
    store = FlatFileStore(tmp_path / "data")
    store.path_for("guides").mkdir()  # un directorio no se puede reemplazar por un archivo
    with pytest.raises(PersistenceError):
        store.save_guides([])


def test_unreadable_file_aborts_load(tmp_path):
    store = FlatFileStore(tmp_path / "data")
    store.path_for("tourists").mkdir()
    with pytest.raises(PersistenceError):
        store.load_tourists()
