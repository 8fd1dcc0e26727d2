import logging
import os
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from pydantic import BaseModel, EmailStr, Field, ValidationError
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import database
from auth import MIN_PASSWORD_LENGTH, InvalidToken, TokenExpired, create_auth_service
from config import load_settings
from database import create_document, ensure_indexes, get_documents, to_object_id
from domain import (
    as_date,
    assert_rating_invariant,
    booking_code,
    check_status_change,
    clean_itinerary,
    clean_list,
    digits_only,
    fold_stats,
    normalize_email,
    summarize_ratings,
    validate_booking_request,
)
from schemas import (
    PLACEHOLDER_IMAGE,
    Booking as BookingSchema,
    CamelModel,
    Rating as RatingSchema,
    SavedTour as SavedTourSchema,
    Tour as TourSchema,
    User as UserSchema,
)
from seed import ensure_default_data

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger("tourvista")

# Settings are loaded at import so a missing JWT_SECRET stops the process here
settings = load_settings()
auth = create_auth_service(settings)
db = database.init_db(settings.mongodb_uri, settings.database_name)
STARTED_AT = time.time()


# Startup

def prepare_database():
    try:
        ensure_indexes(db)
        if settings.seed_default_data:
            ensure_default_data(db, auth)
    except PyMongoError as e:
        logger.error("Database initialization failed, continuing without it: %s", e)


@asynccontextmanager
async def lifespan(app: FastAPI):
    prepare_database()
    yield


# App and CORS
app = FastAPI(title="TourVista India API", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Idempotency-Key"],
)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")

TOUR_NOT_FOUND = {"title": "Tour not found", "price": 0, "duration": "N/A", "description": ""}


# Helpers

def to_obj_id(id_str: str):
    oid = to_object_id(id_str)
    if oid is None:
        raise HTTPException(status_code=400, detail="Invalid id")
    return oid


def sanitize(doc: Dict) -> Dict:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    d.pop("passwordHash", None)
    for k, v in list(d.items()):
        if isinstance(v, datetime):
            d[k] = v.isoformat()
    return d


def public_user(doc: Dict) -> Dict:
    u = sanitize(doc)
    return {
        "id": u["id"],
        "name": u.get("name", ""),
        "email": u.get("email", ""),
        "role": u.get("role", "user"),
        "phone": u.get("phone", ""),
        "address": u.get("address", ""),
        "createdAt": u.get("createdAt"),
    }


def index_by_id(collection: str, ids: List[str]) -> Dict[str, Dict]:
    oids = [oid for oid in (to_object_id(i) for i in set(ids)) if oid is not None]
    if not oids:
        return {}
    return {str(d["_id"]): d for d in db[collection].find({"_id": {"$in": oids}})}


def validation_failed(errors: List[str]) -> HTTPException:
    return HTTPException(status_code=400, detail={"message": "Validation failed", "errors": errors})


def pydantic_messages(exc: ValidationError) -> List[str]:
    return [f"{'.'.join(str(p) for p in e['loc']) or 'body'}: {e['msg']}" for e in exc.errors()]


# Error handling

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    body: Dict[str, Any] = {"success": False}
    if isinstance(exc.detail, dict):
        body.update(exc.detail)
    else:
        body["message"] = exc.detail
    return JSONResponse(body, status_code=exc.status_code, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = []
    for e in exc.errors():
        loc = [str(p) for p in e.get("loc", ()) if p != "body"]
        errors.append(f"{'.'.join(loc) or 'body'}: {e.get('msg')}")
    return JSONResponse({"success": False, "message": "Validation failed", "errors": errors}, status_code=400)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    body: Dict[str, Any] = {"success": False, "message": "Internal server error"}
    if not settings.is_production:
        body["error"] = str(exc)
    return JSONResponse(body, status_code=500)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    logger.info("%s %s", request.method, request.url.path)
    return await call_next(request)


# Auth dependencies

def get_current_user(token: str = Depends(oauth2_scheme)) -> Dict:
    try:
        payload = auth.decode_token(token)
    except TokenExpired:
        raise HTTPException(status_code=401, detail="Token expired", headers={"WWW-Authenticate": "Bearer"})
    except InvalidToken:
        raise HTTPException(status_code=401, detail="Invalid token", headers={"WWW-Authenticate": "Bearer"})
    user_id = to_object_id(payload["sub"])
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid token", headers={"WWW-Authenticate": "Bearer"})
    user = db["user"].find_one({"_id": user_id})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return sanitize(user)


def require_role(*roles: str):
    def role_dep(current_user=Depends(get_current_user)):
        if current_user.get("role") not in roles:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return current_user
    return role_dep


def is_admin(user: Dict) -> bool:
    return user.get("role") == "admin"


def ensure_self_or_admin(current_user: Dict, user_id: str) -> None:
    if current_user["id"] != user_id and not is_admin(current_user):
        raise HTTPException(status_code=403, detail="Not allowed to access another user's data")


# Request Models

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=MIN_PASSWORD_LENGTH, max_length=72)
    phone: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class UpdateProfileRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class TourCreateRequest(CamelModel):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    price: int = Field(..., ge=0)
    duration: str = Field(..., min_length=1)
    detailed_description: Optional[str] = None
    image: Optional[str] = None
    images: Optional[List[str]] = None
    region: Optional[str] = None
    category: Optional[str] = None
    destination: Optional[str] = None
    overview: Optional[Dict[str, Any]] = None
    included: Optional[List[str]] = None
    excluded: Optional[List[str]] = None
    itinerary: Optional[List[Dict[str, Any]]] = None
    requirements: Optional[Dict[str, Any]] = None
    pricing: Optional[Dict[str, Any]] = None
    important_info: Optional[Dict[str, Any]] = None
    max_participants: Optional[int] = None
    is_active: Optional[bool] = None


class TourUpdateRequest(TourCreateRequest):
    title: Optional[str] = None
    description: Optional[str] = None
    price: Optional[int] = Field(None, ge=0)
    duration: Optional[str] = None


class RateTourRequest(CamelModel):
    user_id: Optional[str] = None
    rating: int = Field(..., ge=1, le=5)
    review: Optional[str] = ""


class BookingRequest(CamelModel):
    user: Optional[str] = None
    tour: str
    participants: int = 1
    travel_date: Optional[str] = None
    contact_number: Optional[str] = None
    special_requirements: Optional[str] = None
    email: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    status: str


class SaveTourRequest(CamelModel):
    user_id: str
    tour_id: str


# Auth Routes

@app.post("/api/auth/register", status_code=201)
def register(payload: RegisterRequest):
    email = normalize_email(payload.email)
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="User already exists with this email")
    user = UserSchema(
        name=payload.name.strip(),
        email=email,
        password_hash=auth.hash_password(payload.password),
        role="user",
        phone=(payload.phone or "").strip(),
    )
    try:
        user_id = create_document("user", user)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Email already exists")
    doc = db["user"].find_one({"_id": to_obj_id(user_id)})
    logger.info("Registered user %s", email)
    return {
        "success": True,
        "message": "Registration successful",
        "user": public_user(doc),
        "token": auth.create_access_token(doc),
    }


@app.post("/api/auth/login")
def login(payload: LoginRequest):
    email = normalize_email(payload.email)
    user = db["user"].find_one({"email": email})
    if not user:
        logger.info("Login failed: no account for %s", email)
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if not auth.verify_password(payload.password, user.get("passwordHash", "")):
        logger.info("Login failed: wrong password for %s", email)
        raise HTTPException(status_code=401, detail="Invalid email or password")
    return {
        "success": True,
        "message": "Login successful",
        "user": public_user(user),
        "token": auth.create_access_token(user),
    }


@app.get("/api/auth/profile")
def get_profile(current_user=Depends(get_current_user)):
    return {"success": True, "user": public_user({**current_user, "_id": current_user["id"]})}


@app.put("/api/auth/profile")
def update_profile(payload: UpdateProfileRequest, current_user=Depends(get_current_user)):
    user_id = to_obj_id(current_user["id"])
    updates: Dict[str, Any] = {}
    if payload.name:
        updates["name"] = payload.name.strip()
    if payload.phone is not None:
        updates["phone"] = payload.phone.strip()
    if payload.address is not None:
        updates["address"] = payload.address.strip()
    if payload.email:
        email = normalize_email(payload.email)
        if email != current_user.get("email"):
            if db["user"].find_one({"email": email, "_id": {"$ne": user_id}}):
                raise HTTPException(status_code=400, detail="Email already in use")
            updates["email"] = email
    if updates:
        updates["updatedAt"] = datetime.now(timezone.utc)
        try:
            db["user"].update_one({"_id": user_id}, {"$set": updates})
        except DuplicateKeyError:
            raise HTTPException(status_code=400, detail="Email already in use")
    user = db["user"].find_one({"_id": user_id})
    return {"success": True, "message": "Profile updated successfully", "user": public_user(user)}


# Tour Routes

def build_tour(data: Dict[str, Any], existing: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Merge a create/update payload into a tour document and validate it."""
    doc: Dict[str, Any] = {k: v for k, v in (existing or {}).items() if k not in ("_id", "createdAt", "updatedAt")}
    for key in ("title", "description", "duration", "destination"):
        if data.get(key) is not None:
            doc[key] = data[key].strip()
    if data.get("detailedDescription") is not None:
        doc["detailedDescription"] = data["detailedDescription"].strip()
    for key in ("price", "region", "category", "maxParticipants", "isActive"):
        if data.get(key) is not None:
            doc[key] = data[key]
    if data.get("image") is not None and data["image"].strip():
        doc["image"] = data["image"].strip()
    for key in ("images", "included", "excluded"):
        if data.get(key) is not None:
            doc[key] = clean_list(data[key])
    if data.get("itinerary") is not None:
        doc["itinerary"] = clean_itinerary(data["itinerary"])
    for key in ("overview", "requirements", "pricing", "importantInfo"):
        if data.get(key) is not None:
            doc[key] = {**(doc.get(key) or {}), **data[key]}
    for key in ("highlights", "languages"):
        if key in (doc.get("overview") or {}):
            doc["overview"][key] = clean_list(doc["overview"][key])
    for key in ("documents", "packingList"):
        if key in (doc.get("requirements") or {}):
            doc["requirements"][key] = clean_list(doc["requirements"][key])
    if "discounts" in (doc.get("pricing") or {}):
        doc["pricing"]["discounts"] = [
            d for d in (doc["pricing"]["discounts"] or []) if isinstance(d, dict) and (d.get("name") or "").strip()
        ]

    if existing is None:
        doc.setdefault("detailedDescription", doc.get("description", ""))
        doc.setdefault("destination", f"{doc.get('region') or 'north'} India")
        doc.setdefault("image", PLACEHOLDER_IMAGE)
    pricing = doc.setdefault("pricing", {})
    if not pricing.get("basePrice"):
        pricing["basePrice"] = doc.get("price")

    try:
        return TourSchema.model_validate(doc).model_dump(by_alias=True)
    except ValidationError as e:
        raise validation_failed(pydantic_messages(e))


def load_tour(tour_id: str) -> Dict:
    tour = db["tour"].find_one({"_id": to_obj_id(tour_id)})
    if not tour:
        raise HTTPException(status_code=404, detail="Tour not found")
    return tour


def recompute_tour_rating(tour_id: str) -> Dict[str, Any]:
    scores = [r["rating"] for r in db["rating"].find({"tourId": tour_id})]
    average, total = summarize_ratings(scores)
    db["tour"].update_one(
        {"_id": to_obj_id(tour_id)},
        {"$set": {"averageRating": average, "totalRatings": total, "updatedAt": datetime.now(timezone.utc)}},
    )
    tour = db["tour"].find_one({"_id": to_obj_id(tour_id)})
    if tour:
        assert_rating_invariant(tour.get("averageRating", 0), tour.get("totalRatings", 0), scores)
    return {"averageRating": average, "totalRatings": total}


@app.get("/api/tours")
def list_tours():
    tours = [sanitize(t) for t in get_documents("tour", {"isActive": True}, sort=[("createdAt", -1)])]
    return {"success": True, "count": len(tours), "data": tours}


@app.get("/api/tours/category/{category}")
def list_tours_by_category(category: str):
    tours = [sanitize(t) for t in get_documents("tour", {"category": category, "isActive": True}, sort=[("createdAt", -1)])]
    return {"success": True, "count": len(tours), "data": tours}


@app.get("/api/tours/{tour_id}")
def get_tour(tour_id: str):
    return {"success": True, "data": sanitize(load_tour(tour_id))}


@app.post("/api/tours", status_code=201)
def create_tour(payload: TourCreateRequest, admin=Depends(require_role("admin"))):
    doc = build_tour(payload.model_dump(by_alias=True, exclude_none=True))
    tour_id = create_document("tour", doc)
    logger.info("Tour %s created by %s", tour_id, admin["email"])
    return {"success": True, "message": "Tour created successfully", "data": sanitize(load_tour(tour_id))}


@app.put("/api/tours/{tour_id}")
def update_tour(tour_id: str, payload: TourUpdateRequest, admin=Depends(require_role("admin"))):
    existing = load_tour(tour_id)
    doc = build_tour(payload.model_dump(by_alias=True, exclude_none=True), existing)
    # derived rating fields are owned by the rating flow
    doc["averageRating"] = existing.get("averageRating", 0)
    doc["totalRatings"] = existing.get("totalRatings", 0)
    doc["updatedAt"] = datetime.now(timezone.utc)
    db["tour"].update_one({"_id": existing["_id"]}, {"$set": doc})
    logger.info("Tour %s updated by %s", tour_id, admin["email"])
    return {"success": True, "message": "Tour updated successfully", "data": sanitize(load_tour(tour_id))}


@app.delete("/api/tours/{tour_id}")
def delete_tour(tour_id: str, admin=Depends(require_role("admin"))):
    tour = load_tour(tour_id)
    db["tour"].delete_one({"_id": tour["_id"]})
    db["savedtour"].delete_many({"tour": tour_id})
    db["rating"].delete_many({"tourId": tour_id})
    logger.info("Tour %s deleted by %s", tour_id, admin["email"])
    return {"success": True, "message": "Tour deleted successfully"}


@app.post("/api/tours/{tour_id}/rate")
def rate_tour(tour_id: str, payload: RateTourRequest, current_user=Depends(get_current_user)):
    load_tour(tour_id)
    user_id = current_user["id"]
    if payload.user_id and payload.user_id != user_id and is_admin(current_user):
        user_id = payload.user_id
    now = datetime.now(timezone.utc)
    review = (payload.review or "").strip()
    query = {"tourId": tour_id, "userId": user_id}
    existing = db["rating"].find_one(query)
    if existing is None:
        try:
            create_document("rating", RatingSchema(user_id=user_id, tour_id=tour_id, rating=payload.rating,
                                                   review=review, date=now))
        except DuplicateKeyError:
            existing = db["rating"].find_one(query)
    if existing is not None:
        db["rating"].update_one(query, {"$set": {"rating": payload.rating, "review": review, "date": now,
                                                 "updatedAt": now}})
    aggregate = recompute_tour_rating(tour_id)
    return {
        "success": True,
        "message": "Rating updated successfully" if existing is not None else "Rating added successfully",
        "data": {
            **aggregate,
            "rating": {"userId": user_id, "rating": payload.rating, "review": review, "date": now.isoformat()},
        },
    }


@app.get("/api/tours/{tour_id}/ratings")
def get_tour_ratings(tour_id: str):
    tour = load_tour(tour_id)
    ratings = list(db["rating"].find({"tourId": tour_id}).sort("date", -1))
    users = index_by_id("user", [r["userId"] for r in ratings])
    items = []
    for r in ratings:
        item = sanitize(r)
        u = users.get(r["userId"])
        item["userName"] = u.get("name", "") if u else ""
        item["userEmail"] = u.get("email", "") if u else ""
        items.append(item)
    return {
        "success": True,
        "data": {
            "ratings": items,
            "averageRating": tour.get("averageRating", 0),
            "totalRatings": tour.get("totalRatings", 0),
        },
    }


@app.get("/api/tours/{tour_id}/rating/{user_id}")
def get_user_rating(tour_id: str, user_id: str):
    load_tour(tour_id)
    r = db["rating"].find_one({"tourId": tour_id, "userId": user_id})
    return {"success": True, "data": sanitize(r) if r else None}


# Booking Routes

def format_booking(b: Dict, tours: Dict[str, Dict], users: Dict[str, Dict]) -> Dict[str, Any]:
    d = sanitize(b)
    tour = tours.get(b["tour"])
    user = users.get(b["user"])
    t = tour or TOUR_NOT_FOUND
    images = t.get("images") or []
    return {
        "id": d["id"],
        "bookingId": booking_code(d["id"]),
        "tour": {
            "id": b["tour"] if tour else None,
            "title": t.get("title"),
            "price": t.get("price", 0),
            "description": t.get("description", ""),
            "duration": t.get("duration", "N/A"),
            "image": t.get("image") or (images[0] if images else PLACEHOLDER_IMAGE),
            "category": t.get("category", "heritage"),
            "region": t.get("region", "north"),
        },
        "tourId": b["tour"] if tour else None,
        "tourTitle": t.get("title"),
        "userId": b["user"] if user else None,
        "userName": user.get("name") if user else "User not found",
        "userEmail": user.get("email") if user else "N/A",
        "userPhone": (user.get("phone") or "N/A") if user else "N/A",
        "participants": d["participants"],
        "travelers": d["participants"],
        "travelDate": d.get("travelDate"),
        "bookingDate": d.get("bookingDate"),
        "totalPrice": d["totalPrice"],
        "totalAmount": d["totalPrice"],
        "status": d["status"],
        "specialRequirements": d.get("specialRequirements", ""),
        "contactNumber": d.get("contactNumber") or "N/A",
        "email": d.get("email") or "N/A",
        "createdAt": d.get("createdAt"),
        "updatedAt": d.get("updatedAt"),
    }


def format_bookings(bookings: List[Dict]) -> List[Dict[str, Any]]:
    tours = index_by_id("tour", [b["tour"] for b in bookings])
    users = index_by_id("user", [b["user"] for b in bookings])
    return [format_booking(b, tours, users) for b in bookings]


def booking_list_response(bookings: List[Dict]) -> Dict[str, Any]:
    data = format_bookings(bookings)
    return {
        "success": True,
        "count": len(data),
        "confirmedCount": len([b for b in data if b["status"] == "confirmed"]),
        "data": data,
    }


def load_booking(booking_id: str) -> Dict:
    booking = db["booking"].find_one({"_id": to_obj_id(booking_id)})
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    return booking


def change_booking_status(booking_id: str, status: str, current_user: Dict) -> Dict[str, Any]:
    booking = load_booking(booking_id)
    try:
        check_status_change(booking["status"], status, is_admin(current_user), booking["user"] == current_user["id"])
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    db["booking"].update_one(
        {"_id": booking["_id"]}, {"$set": {"status": status, "updatedAt": datetime.now(timezone.utc)}}
    )
    logger.info("Booking %s: %s -> %s by %s", booking_id, booking["status"], status, current_user["email"])
    updated = format_bookings([load_booking(booking_id)])[0]
    return {"success": True, "message": f"Booking {status} successfully", "data": updated}


def find_keyed_booking(user_id: str, idempotency_key: str) -> Optional[Dict]:
    return db["booking"].find_one({"user": user_id, "idempotencyKey": idempotency_key})


def replay_booking(previous: Dict, idempotency_key: str, response: Response):
    logger.info("Replayed booking %s for key %s", previous["_id"], idempotency_key)
    response.status_code = 200
    return {"success": True, "message": "Booking already created", "replayed": True,
            "data": format_bookings([previous])[0]}


@app.post("/api/bookings", status_code=201)
def create_booking(
    payload: BookingRequest,
    response: Response,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    current_user=Depends(get_current_user),
):
    user_id = payload.user or current_user["id"]
    ensure_self_or_admin(current_user, user_id)

    if idempotency_key:
        previous = find_keyed_booking(user_id, idempotency_key)
        if previous:
            return replay_booking(previous, idempotency_key, response)

    errors = validate_booking_request(payload.participants, payload.travel_date, payload.contact_number, payload.email)
    if errors:
        raise validation_failed(errors)

    tour = load_tour(payload.tour)
    user = db["user"].find_one({"_id": to_obj_id(user_id)})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    day = as_date(payload.travel_date)
    booking = BookingSchema(
        user=user_id,
        tour=payload.tour,
        participants=payload.participants,
        travel_date=datetime(day.year, day.month, day.day, tzinfo=timezone.utc),
        booking_date=datetime.now(timezone.utc),
        total_price=tour["price"] * payload.participants,
        status="confirmed",
        special_requirements=(payload.special_requirements or "").strip(),
        contact_number=digits_only(payload.contact_number) or user.get("phone", ""),
        email=(payload.email or "").strip() or user.get("email", ""),
        idempotency_key=idempotency_key,
    )
    try:
        booking_id = create_document("booking", booking)
    except DuplicateKeyError:
        # Another request with the same key won the insert
        previous = find_keyed_booking(user_id, idempotency_key)
        if not previous:
            raise
        return replay_booking(previous, idempotency_key, response)
    logger.info("Booking %s created: user=%s tour=%s total=%s", booking_id, user_id, payload.tour, booking.total_price)
    return {"success": True, "message": "Booking created successfully", "data": format_bookings([load_booking(booking_id)])[0]}


@app.get("/api/bookings")
def list_all_bookings(admin=Depends(require_role("admin"))):
    return booking_list_response(get_documents("booking", sort=[("createdAt", -1)]))


@app.get("/api/bookings/user/{user_id}")
def list_user_bookings(user_id: str, current_user=Depends(get_current_user)):
    ensure_self_or_admin(current_user, user_id)
    return booking_list_response(get_documents("booking", {"user": user_id}, sort=[("createdAt", -1)]))


@app.put("/api/bookings/{booking_id}")
def update_booking_status(booking_id: str, payload: StatusUpdateRequest, current_user=Depends(get_current_user)):
    return change_booking_status(booking_id, payload.status, current_user)


@app.delete("/api/bookings/{booking_id}")
def delete_booking(booking_id: str, current_user=Depends(get_current_user)):
    booking = load_booking(booking_id)
    if booking["user"] != current_user["id"] and not is_admin(current_user):
        raise HTTPException(status_code=403, detail="Not allowed to modify this booking")
    db["booking"].delete_one({"_id": booking["_id"]})
    logger.info("Booking %s deleted by %s", booking_id, current_user["email"])
    return {"success": True, "message": "Booking deleted successfully"}


# Admin Routes

@app.get("/api/admin/stats")
def admin_stats(admin=Depends(require_role("admin"))):
    users = get_documents("user")
    tours = get_documents("tour", {"isActive": True})
    bookings = get_documents("booking")
    return {"success": True, "data": fold_stats(users, tours, bookings)}


@app.get("/api/admin/users")
@app.get("/api/auth/users")
def admin_list_users(admin=Depends(require_role("admin"))):
    bookings = get_documents("booking")
    result = []
    for u in get_documents("user", sort=[("createdAt", -1)]):
        uid = str(u["_id"])
        mine = [b for b in bookings if b["user"] == uid]
        confirmed = [b for b in mine if b["status"] == "confirmed"]
        result.append({
            **public_user(u),
            "bookingsCount": len(mine),
            "confirmedBookingsCount": len(confirmed),
            "totalSpent": sum(b["totalPrice"] for b in confirmed),
        })
    return {"success": True, "count": len(result), "data": result}


@app.delete("/api/admin/users/{user_id}")
@app.delete("/api/auth/users/{user_id}")
def admin_delete_user(user_id: str, admin=Depends(require_role("admin"))):
    user = db["user"].find_one({"_id": to_obj_id(user_id)})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if user.get("role") == "admin":
        raise HTTPException(status_code=403, detail="Cannot delete admin user")
    rated_tours = {r["tourId"] for r in db["rating"].find({"userId": user_id})}
    db["booking"].delete_many({"user": user_id})
    db["savedtour"].delete_many({"user": user_id})
    db["rating"].delete_many({"userId": user_id})
    db["user"].delete_one({"_id": user["_id"]})
    for tour_id in rated_tours:
        recompute_tour_rating(tour_id)
    logger.info("User %s and associated data deleted by %s", user_id, admin["email"])
    return {"success": True, "message": "User and associated bookings deleted successfully"}


@app.get("/api/admin/tours")
def admin_list_tours(admin=Depends(require_role("admin"))):
    bookings = get_documents("booking")
    result = []
    for t in get_documents("tour", sort=[("createdAt", -1)]):
        tid = str(t["_id"])
        mine = [b for b in bookings if b["tour"] == tid]
        result.append({
            **sanitize(t),
            "confirmedBookingsCount": len([b for b in mine if b["status"] == "confirmed"]),
            "totalBookingsCount": len(mine),
        })
    return {"success": True, "count": len(result), "data": result}


@app.get("/api/admin/bookings")
def admin_list_bookings(admin=Depends(require_role("admin"))):
    return booking_list_response(get_documents("booking", sort=[("createdAt", -1)]))


@app.put("/api/admin/bookings/{booking_id}/status")
def admin_update_booking_status(booking_id: str, payload: StatusUpdateRequest, admin=Depends(require_role("admin"))):
    return change_booking_status(booking_id, payload.status, admin)


@app.delete("/api/admin/bookings/all")
def admin_delete_all_bookings(admin=Depends(require_role("admin"))):
    res = db["booking"].delete_many({})
    logger.warning("All bookings (%d) deleted by %s", res.deleted_count, admin["email"])
    return {"success": True, "message": "All bookings deleted successfully", "deleted": res.deleted_count}


# Saved Tour Routes

def format_saved(saved: Dict, tour: Dict) -> Dict[str, Any]:
    images = tour.get("images") or []
    created = saved.get("createdAt")
    return {
        "id": str(tour["_id"]),
        "title": tour.get("title"),
        "description": tour.get("description"),
        "price": tour.get("price"),
        "duration": tour.get("duration"),
        "image": tour.get("image") or (images[0] if images else PLACEHOLDER_IMAGE),
        "category": tour.get("category"),
        "region": tour.get("region"),
        "savedAt": created.isoformat() if isinstance(created, datetime) else created,
    }


@app.get("/api/saved/{user_id}")
def list_saved_tours(user_id: str, current_user=Depends(get_current_user)):
    ensure_self_or_admin(current_user, user_id)
    saved = get_documents("savedtour", {"user": user_id}, sort=[("createdAt", -1)])
    tours = index_by_id("tour", [s["tour"] for s in saved])
    data = [format_saved(s, tours[s["tour"]]) for s in saved if s["tour"] in tours]
    return {"success": True, "count": len(data), "data": data}


@app.post("/api/saved", status_code=201)
def save_tour(payload: SaveTourRequest, current_user=Depends(get_current_user)):
    ensure_self_or_admin(current_user, payload.user_id)
    tour = load_tour(payload.tour_id)
    if db["savedtour"].find_one({"user": payload.user_id, "tour": payload.tour_id}):
        raise HTTPException(status_code=400, detail="Tour already saved")
    try:
        saved_id = create_document("savedtour", SavedTourSchema(user=payload.user_id, tour=payload.tour_id))
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Tour already saved")
    saved = db["savedtour"].find_one({"_id": to_obj_id(saved_id)})
    return {"success": True, "message": "Tour saved successfully", "data": format_saved(saved, tour)}


@app.delete("/api/saved/{user_id}/{tour_id}")
def remove_saved_tour(user_id: str, tour_id: str, current_user=Depends(get_current_user)):
    ensure_self_or_admin(current_user, user_id)
    res = db["savedtour"].delete_one({"user": user_id, "tour": tour_id})
    removed = res.deleted_count > 0
    return {
        "success": True,
        "removed": removed,
        "message": "Tour removed from saved list" if removed else "Tour was not in saved list",
    }


# Utility endpoints

def database_state() -> str:
    try:
        db.command("ping")
        return "connected"
    except PyMongoError:
        return "disconnected"


@app.get("/")
def root():
    return {
        "message": "TourVista India Backend API",
        "status": "running",
        "endpoints": {
            "auth": "/api/auth",
            "tours": "/api/tours",
            "bookings": "/api/bookings",
            "admin": "/api/admin",
            "saved": "/api/saved",
            "health": "/api/health",
            "debug": "/api/debug",
        },
    }


@app.get("/api/health")
def health():
    state = database_state()
    ok = state == "connected"
    return JSONResponse(
        {
            "success": ok,
            "status": "healthy" if ok else "unhealthy",
            "database": state,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "environment": settings.node_env,
            "jwtSecretConfigured": bool(settings.jwt_secret),
        },
        status_code=200 if ok else 503,
    )


@app.get("/api/debug")
def debug():
    return {
        "success": True,
        "environment": {
            "NODE_ENV": settings.node_env,
            "JWT_SECRET_SET": bool(settings.jwt_secret),
            "MONGODB_URI_SET": bool(os.getenv("MONGODB_URI")),
            "PORT": settings.port,
        },
        "database": {"name": settings.database_name, "state": database_state()},
        "server": {"uptime": round(time.time() - STARTED_AT, 3)},
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
