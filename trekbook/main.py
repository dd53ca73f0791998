# trekbook/main.py
import logging
from datetime import date
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.middleware.sessions import SessionMiddleware

from trekbook.config import LOG_LEVEL, SESSION_SECRET
from trekbook.errors import BookingError, NotFoundError, PersistenceError, ValidationError
from trekbook.models import Booking
from trekbook.service import OpResult, TrekDesk

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# -------------------------
# App
# -------------------------
app = FastAPI(title="Trek Booking")
app.add_middleware(SessionMiddleware, secret_key=SESSION_SECRET, same_site="lax")

_desk: Optional[TrekDesk] = None


def get_desk() -> TrekDesk:
    global _desk
    if _desk is None:
        _desk = TrekDesk.open()
    return _desk


# -------------------------
# Errores -> HTTP
# -------------------------
@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    if isinstance(exc, NotFoundError):
        status = 404
    elif isinstance(exc, PersistenceError):
        status = 500
    elif isinstance(exc, ValidationError):
        status = 400
    else:
        status = 500
    return JSONResponse(status_code=status, content={"detail": exc.message, "entity": exc.entity})


def commit(desk: TrekDesk, result: OpResult) -> None:
    """Save the collections an operation touched.

    On failure the in-memory change is discarded by reloading from disk.
    """
    try:
        for collection in result.collections:
            desk.persist(collection)
    except PersistenceError:
        logger.exception("Save failed, reloading last good state")
        desk.reload()
        raise


# -------------------------
# Payloads
# -------------------------
class AccountIn(BaseModel):
    username: str
    password: str
    confirm_password: str
    full_name: str
    email: str
    phone: str


class TouristIn(AccountIn):
    nationality: str


class GuideIn(AccountIn):
    languages: List[str] = Field(default_factory=list)
    experience_years: int = 0


class LoginIn(BaseModel):
    username: str
    password: str


class BookingIn(BaseModel):
    attraction_name: str
    trek_date: date
    guide_username: Optional[str] = None
    notes: str = ""


class BookingUpdateIn(BaseModel):
    trek_date: Optional[date] = None
    guide_username: Optional[str] = None
    remove_guide: bool = False
    notes: Optional[str] = None


class ProfileIn(BaseModel):
    bio: Optional[str] = None
    available: Optional[bool] = None
    specializations: Optional[List[str]] = None
    profile_image: Optional[str] = None


def public(user) -> dict:
    return user.model_dump(mode="json", exclude={"password"})


def booking_out(b: Booking) -> dict:
    d = b.model_dump(mode="json")
    d["festival_message"] = b.festival_message()
    return d


def result_out(result: OpResult, entity: dict) -> dict:
    return {"ok": result.ok, "changed": result.changed, "message": result.message, "data": entity}


# -------------------------
# Auth helpers
# -------------------------
def current_user(request: Request, desk: TrekDesk) -> Optional[dict]:
    s = request.session.get("user")
    if not s or not isinstance(s, dict):
        return None
    username = s.get("username")
    if not username or not desk.username_exists(username):
        request.session.pop("user", None)
        return None
    return s


def require_auth(request: Request, desk: TrekDesk) -> dict:
    u = current_user(request, desk)
    if not u:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return u


def require_role(u: dict, role: str) -> None:
    if (u.get("role") or "").lower() != role:
        raise HTTPException(status_code=403, detail="Not authorized")


def owned_booking(desk: TrekDesk, u: dict, booking_id: int) -> Booking:
    b = desk.get_booking(booking_id)
    if u["role"] == "tourist" and b.tourist_username != u["username"]:
        raise HTTPException(status_code=403, detail="Not authorized")
    if u["role"] == "guide" and b.guide_username != u["username"]:
        raise HTTPException(status_code=403, detail="Not authorized")
    return b


# -------------------------
# Basic
# -------------------------
@app.get("/health")
def health():
    return {"ok": True}


# -------------------------
# Registro / login
# -------------------------
@app.post("/auth/tourist/register", status_code=201)
def tourist_register(payload: TouristIn, desk: TrekDesk = Depends(get_desk)):
    result = desk.register_tourist(**payload.model_dump())
    commit(desk, result)
    return result_out(result, public(result.entity))


@app.post("/auth/guide/register", status_code=201)
def guide_register(payload: GuideIn, desk: TrekDesk = Depends(get_desk)):
    result = desk.register_guide(**payload.model_dump())
    commit(desk, result)
    return result_out(result, public(result.entity))


@app.post("/auth/login")
def login(request: Request, payload: LoginIn, desk: TrekDesk = Depends(get_desk)):
    request.session.clear()
    try:
        user = desk.authenticate(payload.username, payload.password)
    except ValidationError as e:
        raise HTTPException(status_code=401, detail=e.message)
    request.session["user"] = {"username": user.username, "role": user.role}
    return public(user)


@app.get("/auth/logout")
def logout(request: Request):
    request.session.clear()
    return {"ok": True}


@app.get("/me")
def me(request: Request, desk: TrekDesk = Depends(get_desk)):
    u = require_auth(request, desk)
    if u["role"] == "guide":
        return public(desk.get_guide(u["username"]))
    return public(desk.get_tourist(u["username"]))


# -------------------------
# Catalogo
# -------------------------
@app.get("/attractions")
def list_attractions(desk: TrekDesk = Depends(get_desk)):
    return [a.model_dump(mode="json") for a in desk.list_attractions()]


@app.get("/guides")
def list_guides(available: bool = False, desk: TrekDesk = Depends(get_desk)):
    return [public(g) for g in desk.list_guides(only_available=available)]


@app.get("/quote")
def quote(attraction: str, guide: str = "", trek_date: Optional[date] = None, desk: TrekDesk = Depends(get_desk)):
    return desk.preview_price(attraction, guide or None, trek_date).model_dump()


# -------------------------
# Bookings
# -------------------------
@app.get("/bookings")
def my_bookings(request: Request, desk: TrekDesk = Depends(get_desk)):
    u = require_auth(request, desk)
    return [booking_out(b) for b in desk.load_bookings_for(u["username"])]


@app.post("/bookings", status_code=201)
def create_booking(request: Request, payload: BookingIn, desk: TrekDesk = Depends(get_desk)):
    u = require_auth(request, desk)
    require_role(u, "tourist")
    result = desk.create_booking(
        tourist_username=u["username"],
        attraction_name=payload.attraction_name,
        trek_date=payload.trek_date,
        guide_username=payload.guide_username or None,
        notes=payload.notes,
    )
    commit(desk, result)
    return result_out(result, booking_out(result.entity))


@app.post("/bookings/{booking_id}/confirm")
def confirm_booking(request: Request, booking_id: int, desk: TrekDesk = Depends(get_desk)):
    u = require_auth(request, desk)
    require_role(u, "tourist")
    owned_booking(desk, u, booking_id)
    result = desk.confirm_booking(booking_id)
    commit(desk, result)
    return result_out(result, booking_out(result.entity))


@app.post("/bookings/{booking_id}/cancel")
def cancel_booking(request: Request, booking_id: int, desk: TrekDesk = Depends(get_desk)):
    u = require_auth(request, desk)
    require_role(u, "tourist")
    owned_booking(desk, u, booking_id)
    result = desk.cancel_booking(booking_id)
    commit(desk, result)
    return result_out(result, booking_out(result.entity))


@app.post("/bookings/{booking_id}/update")
def update_booking(request: Request, booking_id: int, payload: BookingUpdateIn, desk: TrekDesk = Depends(get_desk)):
    u = require_auth(request, desk)
    require_role(u, "tourist")
    owned_booking(desk, u, booking_id)
    result = desk.update_booking(
        booking_id,
        new_date=payload.trek_date,
        new_guide=payload.guide_username or None,
        remove_guide=payload.remove_guide,
        notes=payload.notes,
    )
    commit(desk, result)
    return result_out(result, booking_out(result.entity))


@app.post("/bookings/{booking_id}/complete")
def complete_booking(request: Request, booking_id: int, desk: TrekDesk = Depends(get_desk)):
    u = require_auth(request, desk)
    require_role(u, "guide")
    owned_booking(desk, u, booking_id)
    result = desk.complete_booking(booking_id)
    commit(desk, result)
    return result_out(result, booking_out(result.entity))


# -------------------------
# Guide dashboard
# -------------------------
@app.post("/guide/profile")
def guide_profile(request: Request, payload: ProfileIn, desk: TrekDesk = Depends(get_desk)):
    u = require_auth(request, desk)
    require_role(u, "guide")
    result = desk.update_guide_profile(u["username"], **payload.model_dump())
    commit(desk, result)
    return result_out(result, public(result.entity))
