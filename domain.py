"""
Booking, rating and statistics rules shared by the API server and the client.

Nothing in here touches the database or the network.
"""

import re
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

BOOKING_STATUSES = ("pending", "confirmed", "cancelled", "completed")
OWNER_CANCELLABLE = ("pending", "confirmed")
MIN_PARTICIPANTS = 1
MAX_PARTICIPANTS = 10

PHONE_RE = re.compile(r"^[0-9]{10}$")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class RatingInvariantError(RuntimeError):
    pass


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def digits_only(phone: Optional[str]) -> str:
    return re.sub(r"\D+", "", phone or "")


def as_date(value: Union[date, datetime, str, None]) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def validate_booking_request(participants: Any, travel_date: Any, contact_number: Optional[str] = None,
                             email: Optional[str] = None, today: Optional[date] = None) -> List[str]:
    """Return every problem with a booking request; empty means valid.

    The travel date is compared by calendar day only, so booking for today is allowed.
    """
    errors: List[str] = []
    today = today or date.today()

    if isinstance(participants, bool) or not isinstance(participants, int):
        errors.append("Participants must be a whole number")
    elif participants < MIN_PARTICIPANTS:
        errors.append("At least 1 traveler is required")
    elif participants > MAX_PARTICIPANTS:
        errors.append("Maximum 10 travelers allowed")

    if travel_date is None or travel_date == "":
        errors.append("Travel date is required")
    else:
        day = as_date(travel_date)
        if day is None:
            errors.append("Travel date is not a valid date")
        elif day < today:
            errors.append("Travel date cannot be in the past")

    if contact_number and not PHONE_RE.match(digits_only(contact_number)):
        errors.append("Contact number must be 10 digits")

    if email and not EMAIL_RE.match(email.strip()):
        errors.append("Valid email is required")

    return errors


def booking_code(booking_id: str) -> str:
    return f"TV{str(booking_id)[-8:]}"


def check_status_change(current: str, new: str, is_admin: bool, is_owner: bool) -> None:
    """Guard for booking status writes.

    Admins may set any status from any status. Owners may only cancel a
    pending or confirmed booking. Raises ValueError for an unknown status and
    PermissionError when the caller may not make the change.
    """
    if new not in BOOKING_STATUSES:
        raise ValueError("Invalid status. Must be: pending, confirmed, cancelled, or completed")
    if is_admin:
        return
    if not is_owner:
        raise PermissionError("Not allowed to modify this booking")
    if new == current:
        return
    if new != "cancelled":
        raise PermissionError("Only an administrator can set a booking to " + new)
    if current not in OWNER_CANCELLABLE:
        raise PermissionError(f"A {current} booking cannot be cancelled")


def summarize_ratings(scores: Iterable[int]) -> Tuple[float, int]:
    values = list(scores)
    if not values:
        return 0.0, 0
    return sum(values) / len(values), len(values)


def assert_rating_invariant(average: float, total: int, scores: Iterable[int]) -> None:
    expected_avg, expected_total = summarize_ratings(scores)
    if total != expected_total or abs(average - expected_avg) > 1e-9:
        raise RatingInvariantError(
            f"rating aggregate drifted: stored ({average}, {total}) expected ({expected_avg}, {expected_total})"
        )


def booking_amount(booking: Dict[str, Any]) -> float:
    value = booking.get("totalAmount", booking.get("totalPrice", 0))
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def fold_stats(users: Iterable[Dict], tours: Iterable[Dict], bookings: Iterable[Dict]) -> Dict[str, Any]:
    users = list(users)
    tours = list(tours)
    bookings = list(bookings)
    confirmed = [b for b in bookings if b.get("status") == "confirmed"]
    revenue = sum(booking_amount(b) for b in confirmed)
    return {
        "totalUsers": len([u for u in users if u.get("role") != "admin"]),
        "totalTours": len(tours),
        "totalBookings": len(bookings),
        "revenue": int(revenue) if float(revenue).is_integer() else revenue,
        "pendingBookings": len([b for b in bookings if b.get("status") == "pending"]),
        "confirmedBookings": len(confirmed),
    }


def clean_list(items: Any) -> List[str]:
    if not isinstance(items, list):
        return []
    return [i.strip() for i in items if isinstance(i, str) and i.strip()]


def clean_itinerary(days: Any) -> List[Dict[str, Any]]:
    """Drop empty days and renumber the rest from 1."""
    if not isinstance(days, list):
        return []
    kept = [
        d for d in days
        if isinstance(d, dict) and (d.get("title") or d.get("description") or clean_list(d.get("activities")))
    ]
    return [
        {
            "day": i + 1,
            "title": d.get("title") or f"Day {i + 1}",
            "description": d.get("description") or "",
            "activities": clean_list(d.get("activities")),
            "meals": d.get("meals") or "",
            "accommodation": d.get("accommodation") or "",
        }
        for i, d in enumerate(kept)
    ]
