"""
HTTP client for the TourVista API, used by the dashboard and admin panel.

Calls go through `_request`, which applies a fixed timeout and retries only
connection failures and timeouts, with a linearly growing pause between
attempts. Application errors (any HTTP status) are raised immediately as
`ApiError`. Booking submissions carry an idempotency key so a retried POST
cannot create a second booking.
"""

import logging
import time
import uuid
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Union

import requests

from domain import fold_stats, validate_booking_request

logger = logging.getLogger(__name__)

API_TIMEOUT = 15
MAX_RETRIES = 2
RETRY_DELAY = 1.0


class ApiError(Exception):
    def __init__(self, status_code: Optional[int], message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.errors = errors or []


class BookingValidationError(ValueError):
    def __init__(self, errors: List[str]):
        super().__init__("Validation failed: " + ", ".join(errors))
        self.errors = errors


class TourVistaClient:
    def __init__(self, base_url: str, token: Optional[str] = None, timeout: float = API_TIMEOUT,
                 max_retries: int = MAX_RETRIES, retry_delay: float = RETRY_DELAY,
                 session: Optional[requests.Session] = None, sleep: Callable[[float], None] = time.sleep):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.session = session or requests.Session()
        self.sleep = sleep
        self.cached_tours: Optional[List[Dict[str, Any]]] = None

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if extra:
            headers.update(extra)
        return headers

    def _request(self, method: str, path: str, json: Any = None,
                 headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        attempt = 0
        while True:
            try:
                r = self.session.request(method, url, json=json, headers=self._headers(headers), timeout=self.timeout)
                break
            except (requests.ConnectionError, requests.Timeout) as e:
                if attempt >= self.max_retries:
                    raise ApiError(None, "Request timeout. Please try again.") from e
                delay = self.retry_delay * (attempt + 1)
                attempt += 1
                logger.warning("Attempt %d for %s %s failed (%s), retrying in %.1fs", attempt, method, path, e, delay)
                self.sleep(delay)

        try:
            body = r.json()
        except ValueError:
            body = {}
        if not r.ok:
            message = body.get("message") if isinstance(body, dict) else None
            errors = body.get("errors") if isinstance(body, dict) else None
            raise ApiError(r.status_code, message or f"HTTP {r.status_code}", errors)
        return body

    # Auth

    def register(self, name: str, email: str, password: str, phone: Optional[str] = None) -> Dict[str, Any]:
        body = self._request("POST", "/auth/register",
                             json={"name": name, "email": email, "password": password, "phone": phone})
        self.token = body.get("token")
        return body

    def login(self, email: str, password: str) -> Dict[str, Any]:
        body = self._request("POST", "/auth/login", json={"email": email, "password": password})
        self.token = body.get("token")
        return body

    def get_profile(self) -> Dict[str, Any]:
        return self._request("GET", "/auth/profile")["user"]

    def update_profile(self, **fields) -> Dict[str, Any]:
        allowed = {k: v for k, v in fields.items() if k in ("name", "email", "phone", "address") and v is not None}
        return self._request("PUT", "/auth/profile", json=allowed)["user"]

    # Tours

    def list_tours(self) -> List[Dict[str, Any]]:
        tours = self._request("GET", "/tours").get("data") or []
        self.cached_tours = tours
        return tours

    def get_tour(self, tour_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/tours/{tour_id}")["data"]

    def create_tour(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/tours", json=data)["data"]

    def update_tour(self, tour_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PUT", f"/tours/{tour_id}", json=data)["data"]

    def delete_tour(self, tour_id: str) -> bool:
        return self._request("DELETE", f"/tours/{tour_id}").get("success", False)

    def rate_tour(self, user_id: str, tour_id: str, rating: int, review: str = "") -> Dict[str, Any]:
        if not 1 <= rating <= 5:
            raise ValueError("Rating must be between 1 and 5")
        return self._request("POST", f"/tours/{tour_id}/rate",
                             json={"userId": user_id, "rating": rating, "review": review})["data"]

    def get_tour_ratings(self, tour_id: str) -> List[Dict[str, Any]]:
        return (self._request("GET", f"/tours/{tour_id}/ratings").get("data") or {}).get("ratings", [])

    def get_user_rating(self, tour_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        return self._request("GET", f"/tours/{tour_id}/rating/{user_id}").get("data")

    # Bookings

    def create_booking(self, user_id: str, tour_id: str, participants: int, travel_date: Union[date, str],
                       contact_number: str, special_requirements: str = "", email: Optional[str] = None,
                       idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        errors = validate_booking_request(participants, travel_date, contact_number, email)
        if not contact_number:
            errors.append("Contact number is required")
        if errors:
            raise BookingValidationError(errors)

        payload = {
            "user": user_id,
            "tour": tour_id,
            "participants": participants,
            "travelDate": travel_date.isoformat() if isinstance(travel_date, date) else travel_date,
            "contactNumber": contact_number,
            "specialRequirements": special_requirements,
            "email": email,
        }
        key = idempotency_key or uuid.uuid4().hex
        return self._request("POST", "/bookings", json=payload, headers={"Idempotency-Key": key})["data"]

    def list_user_bookings(self, user_id: str) -> List[Dict[str, Any]]:
        return self._request("GET", f"/bookings/user/{user_id}").get("data") or []

    def list_all_bookings(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/admin/bookings").get("data") or []

    def update_booking_status(self, booking_id: str, status: str) -> Dict[str, Any]:
        return self._request("PUT", f"/bookings/{booking_id}", json={"status": status})["data"]

    def cancel_booking(self, booking_id: str) -> Dict[str, Any]:
        return self.update_booking_status(booking_id, "cancelled")

    def delete_booking(self, booking_id: str) -> bool:
        return self._request("DELETE", f"/bookings/{booking_id}").get("success", False)

    # Saved tours

    def list_saved_tours(self, user_id: str) -> List[Dict[str, Any]]:
        return self._request("GET", f"/saved/{user_id}").get("data") or []

    def save_tour(self, user_id: str, tour_id: str) -> Dict[str, Any]:
        return self._request("POST", "/saved", json={"userId": user_id, "tourId": tour_id})["data"]

    def remove_saved_tour(self, user_id: str, tour_id: str) -> bool:
        return self._request("DELETE", f"/saved/{user_id}/{tour_id}").get("removed", False)

    # Admin

    def list_users(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/admin/users").get("data") or []

    def delete_user(self, user_id: str) -> bool:
        return self._request("DELETE", f"/admin/users/{user_id}").get("success", False)

    def admin_set_booking_status(self, booking_id: str, status: str) -> Dict[str, Any]:
        return self._request("PUT", f"/admin/bookings/{booking_id}/status", json={"status": status})["data"]

    def compute_stats(self) -> Dict[str, Any]:
        """Fold the user, tour and booking lists into dashboard counters.

        The three reads are independent; the result is not an atomic snapshot.
        """
        users = self.list_users()
        tours = self.list_tours()
        bookings = self.list_all_bookings()
        return fold_stats(users, tours, bookings)

    def load_dashboard(self, user_id: str) -> Dict[str, Any]:
        """Fetch profile, bookings and tours independently; one failure does not block the others."""
        result: Dict[str, Any] = {"profile": None, "bookings": [], "tours": [], "errors": {}}

        try:
            result["profile"] = self.get_profile()
        except ApiError as e:
            logger.warning("Dashboard profile load failed: %s", e.message)
            result["errors"]["profile"] = e.message

        try:
            result["bookings"] = self.list_user_bookings(user_id)
        except ApiError as e:
            logger.warning("Dashboard bookings load failed: %s", e.message)
            result["errors"]["bookings"] = e.message

        try:
            result["tours"] = self.list_tours()
        except ApiError as e:
            logger.warning("Dashboard tours load failed, using %s cached tours: %s",
                           len(self.cached_tours or []), e.message)
            result["errors"]["tours"] = e.message
            result["tours"] = list(self.cached_tours or [])

        return result
