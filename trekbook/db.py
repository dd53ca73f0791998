import logging
import os
import warnings
from datetime import date
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, TypeVar

from pydantic import BaseModel, Field

from trekbook.config import ATTRACTION_CAPACITY, DATA_DIR
from trekbook.errors import ConsistencyWarning, PersistenceError, ValidationError
from trekbook.models import (
    AltitudeLevel,
    Attraction,
    Booking,
    BookingStatus,
    Difficulty,
    Guide,
    Tourist,
)
from trekbook.validators import SEPARATOR, check_storable, pwd

logger = logging.getLogger(__name__)

T = TypeVar("T")

COLLECTIONS = ("tourists", "guides", "attractions", "bookings")

# (campos base, campos opcionales al final)
LAYOUT = {
    "tourists": (6, 0),
    "guides": (7, 4),        # + specializations, available, bio, profile_image
    "attractions": (5, 1),   # + max_capacity
    "bookings": (8, 2),      # + booking_date, notes
}


class LoadReport(BaseModel):
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors and not self.warnings


class Catalog:
    """Canonical in-memory collections, keyed by their unique keys."""

    def __init__(self):
        self.tourists: Dict[str, Tourist] = {}
        self.guides: Dict[str, Guide] = {}
        self.attractions: Dict[str, Attraction] = {}
        self.bookings: Dict[int, Booking] = {}
        self.next_booking_id = 1
        self.report = LoadReport()

    def issue_booking_id(self) -> int:
        booking_id = self.next_booking_id
        self.next_booking_id += 1
        return booking_id

    def sync_sequence(self, highest_seen: int = 0) -> None:
        # max existente + 1, nunca retrocede; cuenta tambien ids de registros descartados
        highest = max([highest_seen, *self.bookings])
        self.next_booking_id = max(self.next_booking_id, highest + 1)


# -------------------------
# Codec
# -------------------------
def _bool_str(v: bool) -> str:
    return "true" if v else "false"


def _parse_bool(s: str) -> bool:
    v = s.strip().lower()
    if v not in ("true", "false"):
        raise ValueError(f"not a boolean: {s!r}")
    return v == "true"


def _list_str(items: Iterable[str]) -> str:
    return ",".join(items)


def _parse_list(s: str) -> List[str]:
    return [x.strip() for x in s.split(",") if x.strip()]


def join_record(fields: List[str]) -> str:
    return SEPARATOR.join(check_storable(str(f), "field") for f in fields)


def split_record(line: str, collection: str) -> List[str]:
    base, extra = LAYOUT[collection]
    fields = line.split(SEPARATOR)
    if not (base <= len(fields) <= base + extra):
        raise ValidationError(
            f"expected {base}-{base + extra} fields, got {len(fields)}", entity=collection
        )
    # rellena los opcionales que falten
    return fields + [None] * (base + extra - len(fields))


def encode_tourist(t: Tourist) -> str:
    return join_record([t.username, t.password, t.full_name, t.email, t.phone, t.nationality])


def decode_tourist(line: str) -> Tourist:
    username, password, full_name, email, phone, nationality = split_record(line, "tourists")
    return Tourist(
        username=username, password=password, full_name=full_name,
        email=email, phone=phone, nationality=nationality,
    )


def encode_guide(g: Guide) -> str:
    return join_record([
        g.username, g.password, g.full_name, g.email, g.phone,
        _list_str(g.languages), str(g.experience_years),
        _list_str(g.specializations), _bool_str(g.available), g.bio, g.profile_image,
    ])


def decode_guide(line: str) -> Guide:
    (username, password, full_name, email, phone, languages, experience,
     specializations, available, bio, profile_image) = split_record(line, "guides")
    g = Guide(
        username=username, password=password, full_name=full_name, email=email, phone=phone,
        languages=_parse_list(languages), experience_years=int(experience),
    )
    if specializations is not None:
        g.specializations = _parse_list(specializations)
    if available is not None:
        g.available = _parse_bool(available)
    if bio is not None:
        g.bio = bio
    if profile_image is not None:
        g.profile_image = profile_image
    return g


def encode_attraction(a: Attraction) -> str:
    return join_record([
        a.name, a.location, a.altitude_level.value, a.difficulty.value,
        repr(float(a.base_price)), str(a.max_capacity),
    ])


def decode_attraction(line: str, default_capacity: int = ATTRACTION_CAPACITY) -> Attraction:
    name, location, altitude, difficulty, price, capacity = split_record(line, "attractions")
    return Attraction(
        name=name, location=location,
        altitude_level=AltitudeLevel(altitude), difficulty=Difficulty(difficulty),
        base_price=float(price),
        max_capacity=int(capacity) if capacity is not None else default_capacity,
    )


def encode_booking(b: Booking) -> str:
    return join_record([
        str(b.booking_id), b.tourist_username, b.guide_username or "", b.attraction_name,
        b.trek_date.isoformat(), b.status.value, repr(float(b.total_price)),
        _bool_str(b.festival_discount_applied), b.booking_date.isoformat(), b.notes,
    ])


def decode_booking(line: str) -> Booking:
    (booking_id, tourist, guide, attraction, trek_date, status, total,
     festival, booking_date, notes) = split_record(line, "bookings")
    b = Booking(
        booking_id=int(booking_id),
        tourist_username=tourist,
        guide_username=guide.strip() or None,
        attraction_name=attraction,
        trek_date=date.fromisoformat(trek_date.strip()),
        status=BookingStatus(status.strip()),
        total_price=float(total),
        festival_discount_applied=_parse_bool(festival),
        notes=notes or "",
    )
    if booking_date:
        b.booking_date = date.fromisoformat(booking_date.strip())
    return b


ENCODERS = {
    "tourists": encode_tourist,
    "guides": encode_guide,
    "attractions": encode_attraction,
    "bookings": encode_booking,
}


# -------------------------
# Store
# -------------------------
class FlatFileStore:
    def __init__(self, data_dir: Path = DATA_DIR, attraction_capacity: int = ATTRACTION_CAPACITY):
        self.data_dir = Path(data_dir)
        self.attraction_capacity = attraction_capacity
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot create data directory {self.data_dir}: {e}")

    def path_for(self, collection: str) -> Path:
        if collection not in COLLECTIONS:
            raise ValidationError(f"Unknown collection: {collection}", entity=collection)
        return self.data_dir / f"{collection}.dat"

    def _read_lines(self, collection: str) -> List[str]:
        path = self.path_for(collection)
        if not path.exists():
            return []
        try:
            with path.open("r", encoding="utf-8") as f:
                return f.read().splitlines()
        except OSError as e:
            raise PersistenceError(f"Error loading {collection}: {e}", entity=collection)

    def _atomic_write(self, collection: str, lines: List[str]) -> None:
        path = self.path_for(collection)
        tmp_path = path.with_suffix(".tmp")
        try:
            with tmp_path.open("w", encoding="utf-8") as f:
                for line in lines:
                    f.write(line + "\n")
            os.replace(tmp_path, path)
        except OSError as e:
            raise PersistenceError(f"Error saving {collection}: {e}", entity=collection)

    def _decode_all(
        self,
        collection: str,
        decoder: Callable[[str], T],
        report: Optional[LoadReport],
        key: Callable[[T], object],
    ) -> List[T]:
        items: List[T] = []
        seen = set()
        for no, line in enumerate(self._read_lines(collection), start=1):
            if not line.strip():
                continue
            try:
                item = decoder(line)
            except ValidationError as e:
                self._skip(report, f"{collection}:{no}: {e.message}")
                continue
            except (ValueError, TypeError) as e:
                # incluye pydantic.ValidationError
                self._skip(report, f"{collection}:{no}: {e}")
                continue
            k = key(item)
            if k in seen:
                self._skip(report, f"{collection}:{no}: duplicate key {k!r}")
                continue
            seen.add(k)
            items.append(item)
        return items

    @staticmethod
    def _skip(report: Optional[LoadReport], msg: str) -> None:
        logger.warning("Skipping malformed record %s", msg)
        if report is not None:
            report.errors.append(msg)

    # ---- loads ----
    def load_tourists(self, report: Optional[LoadReport] = None) -> List[Tourist]:
        return self._decode_all("tourists", decode_tourist, report, lambda t: t.username)

    def load_guides(self, report: Optional[LoadReport] = None) -> List[Guide]:
        return self._decode_all("guides", decode_guide, report, lambda g: g.username)

    def load_attractions(self, report: Optional[LoadReport] = None) -> List[Attraction]:
        def decoder(line: str) -> Attraction:
            return decode_attraction(line, self.attraction_capacity)

        return self._decode_all("attractions", decoder, report, lambda a: a.name)

    def load_bookings(
        self,
        attractions: Dict[str, Attraction],
        guides: Dict[str, Guide],
        report: Optional[LoadReport] = None,
    ) -> List[Booking]:
        """Decode bookings and resolve their attraction and guide keys.

        A booking whose attraction is unknown is dropped with a
        ConsistencyWarning. An unknown guide clears the reference and the
        price is recomputed without the guide fee.
        """
        bookings: List[Booking] = []
        for b in self._decode_all("bookings", decode_booking, report, lambda b: b.booking_id):
            if b.attraction_name not in attractions:
                w = ConsistencyWarning(
                    f"Booking {b.booking_id} dropped: attraction not found: {b.attraction_name}"
                )
                logger.warning(w.message)
                warnings.warn(w, stacklevel=2)
                if report is not None:
                    report.warnings.append(w.message)
                continue
            if b.guide_username and b.guide_username not in guides:
                logger.info("Booking %d: guide %s not found, left without guide", b.booking_id, b.guide_username)
                b.guide_username = None
                b.reprice(attractions[b.attraction_name])
            bookings.append(b)
        return bookings

    def highest_booking_id(self) -> int:
        """Largest id on disk, counting lines that were skipped or dropped."""
        highest = 0
        for line in self._read_lines("bookings"):
            head = line.split(SEPARATOR, 1)[0].strip()
            if head.isdigit():
                highest = max(highest, int(head))
        return highest

    def load_all(self) -> Catalog:
        catalog = Catalog()
        report = catalog.report

        catalog.attractions = {a.name: a for a in self.load_attractions(report)}
        catalog.guides = {g.username: g for g in self.load_guides(report)}
        catalog.tourists = {t.username: t for t in self.load_tourists(report)}
        bookings = self.load_bookings(catalog.attractions, catalog.guides, report)
        catalog.bookings = {b.booking_id: b for b in bookings}
        catalog.sync_sequence(self.highest_booking_id())

        rebuild_links(catalog)
        return catalog

    # ---- saves (reescritura completa) ----
    def save(self, collection: str, items: Iterable) -> None:
        encoder = ENCODERS.get(collection)
        if encoder is None:
            raise ValidationError(f"Unknown collection: {collection}", entity=collection)
        # codifica todo antes de tocar el archivo
        lines = [encoder(item) for item in items]
        self._atomic_write(collection, lines)
        logger.debug("Saved %d %s", len(lines), collection)

    def save_tourists(self, tourists: Iterable[Tourist]) -> None:
        self.save("tourists", tourists)

    def save_guides(self, guides: Iterable[Guide]) -> None:
        self.save("guides", guides)

    def save_attractions(self, attractions: Iterable[Attraction]) -> None:
        self.save("attractions", attractions)

    def save_bookings(self, bookings: Iterable[Booking]) -> None:
        self.save("bookings", sorted(bookings, key=lambda b: b.booking_id))

    # ---- datos por defecto ----
    def initialize(self) -> None:
        if not self.path_for("attractions").exists():
            self.save_attractions(default_attractions(self.attraction_capacity))
        if not self.path_for("guides").exists():
            self.save_guides(default_guides())


def rebuild_links(catalog: Catalog) -> None:
    """Recompute the state the files do not carry.

    Occupancy counts confirmed bookings, guide ledgers hold confirmed
    bookings (completed ones are assigned then settled so their commission stays in
    earnings) and tourists get their booking ids back.
    """
    for booking_id in sorted(catalog.bookings):
        b = catalog.bookings[booking_id]

        tourist = catalog.tourists.get(b.tourist_username)
        if tourist is not None:
            tourist.add_booking(b.booking_id)
        else:
            logger.warning("Booking %d references unknown tourist %s", b.booking_id, b.tourist_username)

        if b.status == BookingStatus.CONFIRMED:
            attraction = catalog.attractions[b.attraction_name]
            attraction.current_bookings += 1
            if attraction.current_bookings > attraction.max_capacity:
                logger.warning("Attraction %s is over capacity", attraction.name)

        guide = catalog.guides.get(b.guide_username) if b.guide_username else None
        if guide is None:
            continue
        if b.status == BookingStatus.CONFIRMED:
            guide.assign(b)
        elif b.status == BookingStatus.COMPLETED:
            guide.assign(b)
            guide.settle(b)


def default_attractions(capacity: int = ATTRACTION_CAPACITY) -> List[Attraction]:
    return [
        Attraction(name="Everest Base Camp", location="Khumbu", altitude_level=AltitudeLevel.HIGH,
                   difficulty=Difficulty.HARD, base_price=1200.0, max_capacity=capacity),
        Attraction(name="Annapurna Circuit", location="Annapurna", altitude_level=AltitudeLevel.HIGH,
                   difficulty=Difficulty.MEDIUM, base_price=800.0, max_capacity=capacity),
        Attraction(name="Pokhara Sightseeing", location="Pokhara", altitude_level=AltitudeLevel.LOW,
                   difficulty=Difficulty.EASY, base_price=150.0, max_capacity=capacity),
    ]


def default_guides() -> List[Guide]:
    return [
        Guide(username="guide1", password=pwd.hash("password"), full_name="Ram Sharma",
              email="ram@guide.com", phone="1234567890", languages=["English", "Nepali"],
              experience_years=5),
        Guide(username="guide2", password=pwd.hash("password"), full_name="Sita Gurung",
              email="sita@guide.com", phone="9876543210", languages=["English", "Hindi"],
              experience_years=3),
    ]
