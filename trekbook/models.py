import logging
from datetime import date, timedelta
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from trekbook import pricing

logger = logging.getLogger(__name__)

MAX_ACTIVE_BOOKINGS = 5
CANCEL_WINDOW_DAYS = 7
MODIFY_WINDOW_DAYS = 3
DEFAULT_BIO = "Tell us something about yourself!"
DEFAULT_CAPACITY = 20


class AltitudeLevel(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class Difficulty(str, Enum):
    EASY = "Easy"
    MEDIUM = "Medium"
    HARD = "Hard"


class BookingStatus(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    CANCELLED = "Cancelled"
    COMPLETED = "Completed"


ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)


class AssignOutcome(str, Enum):
    ASSIGNED = "assigned"
    ALREADY_ASSIGNED = "already_assigned"
    REJECTED = "rejected"
    REMOVED = "removed"
    SETTLED = "settled"
    NOT_ASSIGNED = "not_assigned"


# -------------------------
# Attraction
# -------------------------
class Attraction(BaseModel):
    name: str = Field(min_length=1)
    location: str = Field(min_length=1)
    altitude_level: AltitudeLevel = AltitudeLevel.LOW
    difficulty: Difficulty = Difficulty.EASY

    base_price: float = Field(gt=0)
    current_bookings: int = Field(default=0, ge=0)
    max_capacity: int = Field(default=DEFAULT_CAPACITY, ge=1)

    def calculate_price(self, festival: bool) -> float:
        return pricing.attraction_price(self.base_price, festival)

    def has_capacity(self) -> bool:
        return self.current_bookings < self.max_capacity

    def is_high_altitude(self) -> bool:
        return self.altitude_level == AltitudeLevel.HIGH

    def increment_bookings(self) -> bool:
        if not self.has_capacity():
            return False
        self.current_bookings += 1
        return True

    def decrement_bookings(self) -> None:
        self.current_bookings = max(0, self.current_bookings - 1)


# -------------------------
# Personas (tourist | guide)
# -------------------------
class Account(BaseModel):
    username: str = Field(min_length=3, max_length=20)
    password: str = Field(min_length=1)  # hash passlib
    full_name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    phone: str = Field(min_length=1)


class Tourist(Account):
    role: Literal["tourist"] = "tourist"
    nationality: str = Field(min_length=1)
    booking_ids: List[int] = Field(default_factory=list)

    def add_booking(self, booking_id: int) -> None:
        if booking_id not in self.booking_ids:
            self.booking_ids.append(booking_id)


class Guide(Account):
    role: Literal["guide"] = "guide"
    languages: List[str] = Field(default_factory=list)
    experience_years: int = Field(default=0, ge=0, le=50)
    specializations: List[str] = Field(default_factory=list)

    total_earnings: float = Field(default=0.0, ge=0)
    assigned_bookings: List[int] = Field(default_factory=list)

    available: bool = True
    bio: str = DEFAULT_BIO
    profile_image: str = ""

    def can_take_booking(self) -> bool:
        return self.available and len(self.assigned_bookings) < MAX_ACTIVE_BOOKINGS

    def assign(self, booking: Optional["Booking"]) -> AssignOutcome:
        """Attach a confirmed booking and credit its commission.

        Duplicates are matched by booking id and leave earnings untouched.
        Capacity is not enforced here; callers check can_take_booking()
        before attaching a new booking.
        """
        if booking is None:
            return AssignOutcome.REJECTED
        if booking.booking_id in self.assigned_bookings:
            return AssignOutcome.ALREADY_ASSIGNED

        commission = booking.guide_commission
        self.assigned_bookings.append(booking.booking_id)
        self.total_earnings = round(self.total_earnings + commission, 2)
        logger.info(
            "Guide %s earned %.2f from booking %d. Total earnings: %.2f",
            self.username, commission, booking.booking_id, self.total_earnings,
        )
        return AssignOutcome.ASSIGNED

    def remove(self, booking: Optional["Booking"]) -> AssignOutcome:
        if booking is None or booking.booking_id not in self.assigned_bookings:
            return AssignOutcome.NOT_ASSIGNED

        commission = booking.guide_commission
        self.assigned_bookings.remove(booking.booking_id)
        self.total_earnings = max(0.0, round(self.total_earnings - commission, 2))
        logger.info("Guide %s lost %.2f from booking %d", self.username, commission, booking.booking_id)
        return AssignOutcome.REMOVED

    def settle(self, booking: Optional["Booking"]) -> AssignOutcome:
        """Free the slot of a completed trek. Earnings are cumulative and keep its commission."""
        if booking is None or booking.booking_id not in self.assigned_bookings:
            return AssignOutcome.NOT_ASSIGNED
        self.assigned_bookings.remove(booking.booking_id)
        return AssignOutcome.SETTLED

    def languages_str(self) -> str:
        return ", ".join(self.languages)


Person = Annotated[Union[Tourist, Guide], Field(discriminator="role")]


# -------------------------
# Booking
# -------------------------
class Booking(BaseModel):
    booking_id: int = Field(ge=1)
    tourist_username: str = Field(min_length=1)
    guide_username: Optional[str] = None
    attraction_name: str = Field(min_length=1)

    booking_date: date = Field(default_factory=date.today)
    trek_date: date
    status: BookingStatus = BookingStatus.PENDING

    total_price: float = Field(default=0.0, ge=0)
    festival_discount_applied: bool = False
    notes: str = ""

    @property
    def has_guide(self) -> bool:
        return bool(self.guide_username)

    @property
    def guide_commission(self) -> float:
        if not self.has_guide:
            return 0.0
        return pricing.commission_part(self.total_price)

    def reprice(self, attraction: Attraction) -> float:
        self.festival_discount_applied = pricing.is_festival_season(self.trek_date)
        self.total_price = pricing.booking_total(attraction.base_price, self.has_guide, self.trek_date)
        return self.total_price

    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def is_upcoming(self, today: Optional[date] = None) -> bool:
        today = today or date.today()
        return self.trek_date > today and self.is_active()

    def can_be_cancelled(self, today: Optional[date] = None) -> bool:
        today = today or date.today()
        return self.trek_date > today + timedelta(days=CANCEL_WINDOW_DAYS) and self.is_active()

    def can_be_modified(self, today: Optional[date] = None) -> bool:
        today = today or date.today()
        return self.trek_date > today + timedelta(days=MODIFY_WINDOW_DAYS) and self.is_active()

    def festival_message(self) -> str:
        if not self.festival_discount_applied:
            return ""
        return "Festival Discount Applied! (Dashain & Tihar Season - 20% OFF)"
