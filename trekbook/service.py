import logging
from datetime import date
from pathlib import Path
from typing import Any, Iterable, List, Optional

from pydantic import BaseModel, Field

from trekbook import pricing
from trekbook.config import ATTRACTION_CAPACITY, DATA_DIR, SEED_DEFAULTS
from trekbook.db import COLLECTIONS, Catalog, FlatFileStore, LoadReport
from trekbook.errors import NotFoundError, ValidationError
from trekbook.models import (
    AssignOutcome,
    Attraction,
    Booking,
    BookingStatus,
    Guide,
    MAX_ACTIVE_BOOKINGS,
    Tourist,
)
from trekbook.validators import (
    check_storable,
    parse_list,
    pwd,
    validate_common_user_fields,
    validate_experience,
    validate_languages,
    validate_nationality,
    validate_password_pair,
    validate_username,
)

logger = logging.getLogger(__name__)

HIGH_ALTITUDE_WARNING = (
    "This trek involves high altitude. Please ensure you are physically fit "
    "and consult a doctor if you have any health concerns."
)


class OpResult(BaseModel):
    ok: bool = True
    changed: bool = True
    entity: Optional[Any] = None
    message: str = ""
    # colecciones que el llamador debe persistir
    collections: List[str] = Field(default_factory=list)


class TrekDesk:
    """Entry point for every booking operation.

    All operations mutate the in-memory catalog only. The caller persists the
    collections named in OpResult.collections and, if that save fails,
    decides whether to retry or reload().
    """

    def __init__(self, store: FlatFileStore, catalog: Optional[Catalog] = None):
        self.store = store
        self.catalog = catalog if catalog is not None else store.load_all()

    @classmethod
    def open(
        cls,
        data_dir: Path = DATA_DIR,
        seed: bool = SEED_DEFAULTS,
        attraction_capacity: int = ATTRACTION_CAPACITY,
    ) -> "TrekDesk":
        store = FlatFileStore(data_dir, attraction_capacity=attraction_capacity)
        if seed:
            store.initialize()
        return cls(store)

    def reload(self) -> LoadReport:
        self.catalog = self.store.load_all()
        return self.catalog.report

    # -------------------------
    # Lookups
    # -------------------------
    def get_tourist(self, username: str) -> Tourist:
        t = self.catalog.tourists.get(username)
        if t is None:
            raise NotFoundError(f"Tourist not found: {username}", entity="tourist")
        return t

    def get_guide(self, username: str) -> Guide:
        g = self.catalog.guides.get(username)
        if g is None:
            raise NotFoundError(f"Guide not found: {username}", entity="guide")
        return g

    def get_attraction(self, name: str) -> Attraction:
        a = self.catalog.attractions.get(name)
        if a is None:
            raise NotFoundError(f"Attraction not found: {name}", entity="attraction")
        return a

    def get_booking(self, booking_id: int) -> Booking:
        b = self.catalog.bookings.get(booking_id)
        if b is None:
            raise NotFoundError(f"Booking not found: {booking_id}", entity="booking")
        return b

    def username_exists(self, username: str) -> bool:
        return username in self.catalog.tourists or username in self.catalog.guides

    # -------------------------
    # Registro / login
    # -------------------------
    def _check_new_account(self, username, password, confirm_password, full_name, email, phone):
        username = validate_username(username)
        password = validate_password_pair(password, confirm_password)
        full_name, email, phone = validate_common_user_fields(full_name, email, phone)
        if self.username_exists(username):
            raise ValidationError("Username already exists.", entity="username")
        return username, pwd.hash(password), full_name, email, phone

    def register_tourist(
        self,
        username: str,
        password: str,
        confirm_password: str,
        full_name: str,
        email: str,
        phone: str,
        nationality: str,
    ) -> OpResult:
        username, password_hash, full_name, email, phone = self._check_new_account(
            username, password, confirm_password, full_name, email, phone
        )
        tourist = Tourist(
            username=username, password=password_hash, full_name=full_name,
            email=email, phone=phone, nationality=validate_nationality(nationality),
        )
        self.catalog.tourists[username] = tourist
        logger.info("Registered tourist %s", username)
        return OpResult(entity=tourist, message="Registration successful!", collections=["tourists"])

    def register_guide(
        self,
        username: str,
        password: str,
        confirm_password: str,
        full_name: str,
        email: str,
        phone: str,
        languages,
        experience_years,
    ) -> OpResult:
        username, password_hash, full_name, email, phone = self._check_new_account(
            username, password, confirm_password, full_name, email, phone
        )
        guide = Guide(
            username=username, password=password_hash, full_name=full_name, email=email, phone=phone,
            languages=validate_languages(languages),
            experience_years=validate_experience(experience_years),
        )
        self.catalog.guides[username] = guide
        logger.info("Registered guide %s", username)
        return OpResult(entity=guide, message="Registration successful!", collections=["guides"])

    def authenticate(self, username: str, password: str):
        username = (username or "").strip()
        user = self.catalog.tourists.get(username) or self.catalog.guides.get(username)
        if user is None or not pwd.verify(password or "", user.password):
            raise ValidationError("Invalid credentials.", entity="credentials")
        return user

    # -------------------------
    # Catalogo
    # -------------------------
    def list_attractions(self) -> List[Attraction]:
        return sorted(self.catalog.attractions.values(), key=lambda a: a.name)

    def list_guides(self, only_available: bool = False) -> List[Guide]:
        guides = sorted(self.catalog.guides.values(), key=lambda g: g.username)
        if only_available:
            guides = [g for g in guides if self._guide_has_room(g)]
        return guides

    def preview_price(
        self,
        attraction_name: str,
        guide_username: Optional[str] = None,
        trek_date: Optional[date] = None,
    ) -> pricing.Quote:
        attraction = self.get_attraction(attraction_name)
        if guide_username:
            self.get_guide(guide_username)
        return pricing.quote(
            attraction.base_price, bool(guide_username), trek_date, high_altitude=attraction.is_high_altitude()
        )

    def update_guide_profile(
        self,
        username: str,
        bio: Optional[str] = None,
        available: Optional[bool] = None,
        specializations: Optional[Iterable[str]] = None,
        profile_image: Optional[str] = None,
    ) -> OpResult:
        guide = self.get_guide(username)
        changes = {}
        if bio is not None:
            changes["bio"] = check_storable(bio.strip(), "bio")
        if available is not None:
            changes["available"] = bool(available)
        if specializations is not None:
            changes["specializations"] = parse_list(specializations, "specialization")
        if profile_image is not None:
            changes["profile_image"] = check_storable(profile_image.strip(), "profile_image")
        for k, v in changes.items():
            setattr(guide, k, v)
        return OpResult(entity=guide, collections=["guides"])

    # -------------------------
    # Bookings
    # -------------------------
    def _guide_for(self, booking: Booking) -> Optional[Guide]:
        if not booking.guide_username:
            return None
        return self.catalog.guides.get(booking.guide_username)

    def _guide_has_room(self, guide: Guide, exclude: Optional[int] = None) -> bool:
        """Pending and confirmed bookings that name the guide both count."""
        if not guide.available:
            return False
        active = sum(
            1 for b in self.catalog.bookings.values()
            if b.guide_username == guide.username and b.is_active() and b.booking_id != exclude
        )
        return active < MAX_ACTIVE_BOOKINGS

    def create_booking(
        self,
        tourist_username: str,
        attraction_name: str,
        trek_date: date,
        guide_username: Optional[str] = None,
        notes: str = "",
        today: Optional[date] = None,
    ) -> OpResult:
        today = today or date.today()
        tourist = self.get_tourist(tourist_username)
        attraction = self.get_attraction(attraction_name)
        guide = self.get_guide(guide_username) if guide_username else None

        if trek_date <= today:
            raise ValidationError("Trek date must be in the future.", entity="trek_date")
        if not attraction.has_capacity():
            raise ValidationError(f"{attraction.name} is fully booked.", entity="attraction")
        if guide is not None and not self._guide_has_room(guide):
            raise ValidationError(f"Guide {guide.username} cannot take more bookings.", entity="guide")
        notes = check_storable((notes or "").strip(), "notes")

        booking = Booking(
            booking_id=self.catalog.issue_booking_id(),
            tourist_username=tourist.username,
            guide_username=guide.username if guide else None,
            attraction_name=attraction.name,
            booking_date=today,
            trek_date=trek_date,
            notes=notes,
        )
        booking.reprice(attraction)

        self.catalog.bookings[booking.booking_id] = booking
        tourist.add_booking(booking.booking_id)

        messages = [booking.festival_message()]
        if attraction.is_high_altitude():
            messages.append(HIGH_ALTITUDE_WARNING)

        logger.info("Booking %d created for %s (%.2f)", booking.booking_id, tourist.username, booking.total_price)
        return OpResult(entity=booking, message=" ".join(m for m in messages if m), collections=["bookings"])

    def confirm_booking(self, booking_id: int) -> OpResult:
        booking = self.get_booking(booking_id)
        if booking.status != BookingStatus.PENDING:
            return OpResult(
                changed=False, entity=booking,
                message=f"Booking {booking_id} is {booking.status.value}, nothing to confirm.",
            )

        attraction = self.get_attraction(booking.attraction_name)
        guide = self._guide_for(booking)
        if guide is not None and booking.booking_id not in guide.assigned_bookings and not guide.can_take_booking():
            raise ValidationError(f"Guide {guide.username} cannot take more bookings.", entity="guide")
        if not attraction.increment_bookings():
            raise ValidationError(f"{attraction.name} is fully booked.", entity="attraction")

        booking.status = BookingStatus.CONFIRMED
        if guide is not None:
            guide.assign(booking)
        return OpResult(entity=booking, message="Booking confirmed!", collections=["bookings"])

    def cancel_booking(self, booking_id: int, today: Optional[date] = None) -> OpResult:
        booking = self.get_booking(booking_id)
        if booking.status == BookingStatus.CANCELLED:
            raise ValidationError(f"Booking {booking_id} is already cancelled.", entity="booking")
        if booking.status == BookingStatus.COMPLETED:
            raise ValidationError(f"Booking {booking_id} is completed and cannot be cancelled.", entity="booking")
        if not booking.can_be_cancelled(today):
            raise ValidationError(
                "Bookings can only be cancelled more than 7 days before the trek.", entity="booking"
            )

        was_confirmed = booking.status == BookingStatus.CONFIRMED
        booking.status = BookingStatus.CANCELLED
        if was_confirmed:
            self.get_attraction(booking.attraction_name).decrement_bookings()
        guide = self._guide_for(booking)
        if guide is not None:
            guide.remove(booking)
        return OpResult(entity=booking, message="Booking cancelled successfully!", collections=["bookings"])

    def complete_booking(self, booking_id: int, today: Optional[date] = None) -> OpResult:
        today = today or date.today()
        booking = self.get_booking(booking_id)
        if booking.status != BookingStatus.CONFIRMED:
            raise ValidationError("Only confirmed bookings can be completed.", entity="booking")
        if booking.trek_date > today:
            raise ValidationError("The trek has not happened yet.", entity="booking")

        booking.status = BookingStatus.COMPLETED
        self.get_attraction(booking.attraction_name).decrement_bookings()
        guide = self._guide_for(booking)
        if guide is not None:
            guide.settle(booking)
        return OpResult(entity=booking, message="Booking completed.", collections=["bookings"])

    def update_booking(
        self,
        booking_id: int,
        new_date: Optional[date] = None,
        new_guide: Optional[str] = None,
        remove_guide: bool = False,
        notes: Optional[str] = None,
        today: Optional[date] = None,
    ) -> OpResult:
        """Change trek date and/or guide of an active booking.

        The old guide is detached before the change and the new one attached
        after the price is recomputed, so earnings follow the new total even
        when the guide stays the same.
        """
        today = today or date.today()
        booking = self.get_booking(booking_id)
        if not booking.can_be_modified(today):
            raise ValidationError(
                "Bookings can only be modified more than 3 days before the trek.", entity="booking"
            )
        if new_date is not None and new_date <= today:
            raise ValidationError("Trek date must be in the future.", entity="trek_date")

        old_guide = self._guide_for(booking)
        if remove_guide:
            target = None
        elif new_guide:
            target = self.get_guide(new_guide)
            if target is not old_guide and not self._guide_has_room(target, exclude=booking_id):
                raise ValidationError(f"Guide {target.username} cannot take more bookings.", entity="guide")
        else:
            target = old_guide
        attraction = self.get_attraction(booking.attraction_name)
        if notes is not None:
            check_storable(notes.strip(), "notes")

        # a partir de aqui no hay validaciones: remove -> cambio -> reprice -> assign
        if old_guide is not None:
            old_guide.remove(booking)
        if new_date is not None:
            booking.trek_date = new_date
        booking.guide_username = target.username if target else None
        if notes is not None:
            booking.notes = notes.strip()
        booking.reprice(attraction)
        outcome = AssignOutcome.NOT_ASSIGNED
        if target is not None and booking.status == BookingStatus.CONFIRMED:
            outcome = target.assign(booking)

        logger.info("Booking %d updated (guide: %s, %s)", booking_id, booking.guide_username, outcome.value)
        return OpResult(entity=booking, message="Booking updated successfully!", collections=["bookings"])

    def load_bookings_for(self, username: str) -> List[Booking]:
        """Bookings made by a tourist, or those assigned to a guide."""
        if username in self.catalog.tourists:
            ids = self.catalog.tourists[username].booking_ids
            return [self.catalog.bookings[i] for i in ids if i in self.catalog.bookings]
        if username in self.catalog.guides:
            return sorted(
                (b for b in self.catalog.bookings.values() if b.guide_username == username),
                key=lambda b: b.booking_id,
            )
        raise NotFoundError(f"User not found: {username}", entity="user")

    # -------------------------
    # Persistencia
    # -------------------------
    def persist(self, collection: str) -> None:
        items = {
            "tourists": self.catalog.tourists,
            "guides": self.catalog.guides,
            "attractions": self.catalog.attractions,
            "bookings": self.catalog.bookings,
        }.get(collection)
        if items is None:
            raise ValidationError(f"Unknown collection: {collection}", entity=collection)
        self.store.save(collection, sorted(items.values(), key=_sort_key(collection)))

    def persist_all(self) -> None:
        for collection in COLLECTIONS:
            self.persist(collection)


def _sort_key(collection: str):
    if collection == "bookings":
        return lambda b: b.booking_id
    if collection == "attractions":
        return lambda a: a.name
    return lambda p: p.username
