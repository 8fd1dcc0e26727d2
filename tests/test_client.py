import json
from datetime import date, timedelta

import pytest
import requests

from client import ApiError, BookingValidationError, TourVistaClient


def make_response(status_code=200, body=None):
    r = requests.Response()
    r.status_code = status_code
    r._content = json.dumps(body if body is not None else {}).encode()
    r.headers["Content-Type"] = "application/json"
    return r


class FakeSession:
    """Replays queued outcomes; exceptions in the queue are raised."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def request(self, method, url, json=None, headers=None, timeout=None):
        self.calls.append({"method": method, "url": url, "json": json, "headers": headers, "timeout": timeout})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def make_client(outcomes, token="tok"):
    session = FakeSession(outcomes)
    sleeps = []
    api = TourVistaClient("http://api.test/api/", token=token, session=session, sleep=sleeps.append)
    return api, session, sleeps


def test_retries_network_errors_with_linear_backoff():
    api, session, sleeps = make_client([
        requests.ConnectionError("down"),
        requests.Timeout("slow"),
        make_response(200, {"success": True, "data": [{"id": "t1"}]}),
    ])
    assert api.list_tours() == [{"id": "t1"}]
    assert len(session.calls) == 3
    assert sleeps == [1.0, 2.0]
    assert session.calls[0]["timeout"] == 15
    assert session.calls[0]["url"] == "http://api.test/api/tours"
    assert session.calls[0]["headers"]["Authorization"] == "Bearer tok"


def test_gives_up_after_two_retries():
    api, session, sleeps = make_client([requests.Timeout("slow")] * 3)
    with pytest.raises(ApiError) as exc:
        api.list_tours()
    assert exc.value.status_code is None
    assert len(session.calls) == 3
    assert sleeps == [1.0, 2.0]


@pytest.mark.parametrize("status", [400, 404, 500, 503])
def test_http_errors_are_not_retried(status):
    api, session, sleeps = make_client([make_response(status, {"success": False, "message": "nope", "errors": ["x"]})])
    with pytest.raises(ApiError) as exc:
        api.get_tour("t1")
    assert exc.value.status_code == status
    assert exc.value.message == "nope"
    assert exc.value.errors == ["x"]
    assert len(session.calls) == 1
    assert sleeps == []


@pytest.mark.parametrize("participants,travel_date", [
    (0, date.today() + timedelta(days=3)),
    (11, date.today() + timedelta(days=3)),
    (2, date.today() - timedelta(days=1)),
])
def test_invalid_booking_never_reaches_network(participants, travel_date):
    api, session, _ = make_client([])
    with pytest.raises(BookingValidationError):
        api.create_booking("u1", "t1", participants, travel_date, "9876543210")
    assert session.calls == []


def test_booking_requires_contact_number():
    api, session, _ = make_client([])
    with pytest.raises(BookingValidationError) as exc:
        api.create_booking("u1", "t1", 2, date.today(), "")
    assert "Contact number is required" in exc.value.errors
    assert session.calls == []


def test_retried_booking_reuses_idempotency_key():
    api, session, sleeps = make_client([
        requests.Timeout("slow"),
        make_response(201, {"success": True, "data": {"id": "b1", "status": "confirmed"}}),
    ])
    travel = date.today() + timedelta(days=10)
    booking = api.create_booking("u1", "t1", 3, travel, "9876543210", special_requirements="veg")
    assert booking["id"] == "b1"
    keys = {c["headers"]["Idempotency-Key"] for c in session.calls}
    assert len(session.calls) == 2
    assert len(keys) == 1
    assert session.calls[0]["json"]["travelDate"] == travel.isoformat()
    assert session.calls[0]["json"]["participants"] == 3


def test_separate_bookings_get_separate_keys():
    ok = {"success": True, "data": {"id": "b"}}
    api, session, _ = make_client([make_response(201, ok), make_response(201, ok)])
    travel = date.today() + timedelta(days=1)
    api.create_booking("u1", "t1", 1, travel, "9876543210")
    api.create_booking("u1", "t1", 1, travel, "9876543210")
    assert session.calls[0]["headers"]["Idempotency-Key"] != session.calls[1]["headers"]["Idempotency-Key"]


def test_cancel_booking_sends_cancelled_status():
    api, session, _ = make_client([make_response(200, {"success": True, "data": {"id": "b1", "status": "cancelled"}})])
    assert api.cancel_booking("b1")["status"] == "cancelled"
    assert session.calls[0]["method"] == "PUT"
    assert session.calls[0]["json"] == {"status": "cancelled"}


def test_compute_stats_folds_three_lists():
    api, session, _ = make_client([
        make_response(200, {"data": [{"role": "admin"}, {"role": "user"}]}),
        make_response(200, {"data": [{"id": "t1"}, {"id": "t2"}]}),
        make_response(200, {"data": [
            {"status": "confirmed", "totalAmount": 6000},
            {"status": "cancelled", "totalAmount": 1000},
            {"status": "pending", "totalAmount": 2000},
        ]}),
    ])
    assert api.compute_stats() == {
        "totalUsers": 1,
        "totalTours": 2,
        "totalBookings": 3,
        "revenue": 6000,
        "pendingBookings": 1,
        "confirmedBookings": 1,
    }
    assert [c["url"].rsplit("/api", 1)[1] for c in session.calls] == ["/admin/users", "/tours", "/admin/bookings"]


def test_dashboard_load_is_best_effort_with_cached_tours():
    api, _, _ = make_client([make_response(200, {"data": [{"id": "cached"}]})])
    api.list_tours()

    api.session = FakeSession([
        make_response(401, {"success": False, "message": "Token expired"}),
        make_response(200, {"data": [{"id": "b1"}]}),
        requests.ConnectionError("down"),
        requests.ConnectionError("down"),
        requests.ConnectionError("down"),
    ])
    result = api.load_dashboard("u1")
    assert result["profile"] is None
    assert result["errors"]["profile"] == "Token expired"
    assert result["bookings"] == [{"id": "b1"}]
    assert result["tours"] == [{"id": "cached"}]
    assert "tours" in result["errors"]


def test_login_stores_token():
    api, session, _ = make_client([make_response(200, {"success": True, "token": "new", "user": {}})], token=None)
    api.login("a@example.com", "secret123")
    assert api.token == "new"
    assert "Authorization" not in session.calls[0]["headers"]


def test_remove_saved_tour_reports_whether_removed():
    api, _, _ = make_client([make_response(200, {"success": True, "removed": False})])
    assert api.remove_saved_tour("u1", "t1") is False


def test_rate_tour_rejects_out_of_range_locally():
    api, session, _ = make_client([])
    with pytest.raises(ValueError):
        api.rate_tour("u1", "t1", 0)
    assert session.calls == []
