import re
from typing import List

from passlib.context import CryptContext

from trekbook.errors import ValidationError

SEPARATOR = "%%%"

# Password hashing (pbkdf2 evita drama con bcrypt)
pwd = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

USERNAME_RE = re.compile(r"^[a-zA-Z0-9_]{3,20}$")
PASSWORD_RE = re.compile(r"^(?=.*[0-9])(?=.*[a-z])(?=.*[A-Z])(?=.*[@#$%^&+=])(?=\S+$).{8,}$")
NAME_RE = re.compile(r"^[a-zA-Z ]{3,50}$")
EMAIL_RE = re.compile(r"^[a-zA-Z0-9_+&*-]+(?:\.[a-zA-Z0-9_+&*-]+)*@(?:[a-zA-Z0-9-]+\.)+[a-zA-Z]{2,7}$")
PHONE_RE = re.compile(r"^[0-9]{7,15}$")


def _clean(s: str) -> str:
    return (s or "").strip()


def normalize_email(email: str) -> str:
    return _clean(email).lower()


def check_storable(value: str, field: str) -> str:
    """Reject text that would break the flat-file record layout."""
    if SEPARATOR in value or "\n" in value or "\r" in value:
        raise ValidationError(f"{field} contains reserved characters.", entity=field)
    return value


def validate_username(username: str) -> str:
    username = _clean(username)
    if not USERNAME_RE.match(username):
        raise ValidationError("Username must be 3-20 chars (letters, numbers, _).", entity="username")
    return username


def validate_password_pair(password: str, confirm_password: str) -> str:
    password = _clean(password)
    confirm_password = _clean(confirm_password)
    if not PASSWORD_RE.match(password):
        raise ValidationError("Password needs uppercase, lowercase, number & special char (8+).", entity="password")
    if password != confirm_password:
        raise ValidationError("Passwords don't match.", entity="password")
    return password


def validate_common_user_fields(full_name: str, email: str, phone: str) -> tuple[str, str, str]:
    full_name = _clean(full_name)
    email = normalize_email(email)
    phone = _clean(phone)

    if not NAME_RE.match(full_name):
        raise ValidationError("Full name must be 3-50 alphabetic characters.", entity="full_name")
    if not EMAIL_RE.match(email):
        raise ValidationError("Invalid email format.", entity="email")
    if not PHONE_RE.match(phone):
        raise ValidationError("Phone must be 7-15 digits only.", entity="phone")
    return full_name, email, phone


def validate_nationality(nationality: str) -> str:
    nationality = _clean(nationality)
    if not NAME_RE.match(nationality):
        raise ValidationError("Nationality must be 3-50 alphabetic characters.", entity="nationality")
    return nationality


def parse_list(raw, field: str = "language") -> List[str]:
    """Accepts "English, Nepali" or a list; drops blanks and duplicates."""
    parts = [raw] if isinstance(raw, str) else list(raw or [])
    out: List[str] = []
    for part in parts:
        for item in str(part).split(","):
            value = _clean(item)
            if value and value not in out:
                out.append(check_storable(value, field))
    return out


def validate_languages(raw) -> List[str]:
    langs = parse_list(raw, "language")
    if not langs:
        raise ValidationError("At least one language required.", entity="languages")
    return langs


def validate_experience(raw) -> int:
    try:
        years = int(str(raw).strip())
    except (TypeError, ValueError):
        raise ValidationError("Experience must be a number.", entity="experience_years")
    if years < 0 or years > 50:
        raise ValidationError("Experience must be 0-50 years.", entity="experience_years")
    return years
