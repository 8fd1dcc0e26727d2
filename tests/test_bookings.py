from datetime import date, timedelta

import pytest

import main
from conftest import future_day


@pytest.fixture
def booking_payload():
    def _payload(user_id, tour_id, participants=2, **extra):
        return {
            "user": user_id,
            "tour": tour_id,
            "participants": participants,
            "travelDate": future_day(),
            "contactNumber": "98765-43210",
            **extra,
        }
    return _payload


def test_booking_total_price_and_cancel_scenario(client, admin_headers, register, make_tour, booking_payload):
    make_tour(title="Budget", price=1000)
    premium = make_tour(title="Premium", price=2000)
    user, headers = register()

    res = client.post("/api/bookings", json=booking_payload(user["id"], premium["id"], participants=3), headers=headers)
    assert res.status_code == 201
    booking = res.json()["data"]
    assert booking["totalPrice"] == 6000
    assert booking["totalAmount"] == 6000
    assert booking["status"] == "confirmed"
    assert booking["bookingId"] == "TV" + booking["id"][-8:]
    assert booking["contactNumber"] == "9876543210"

    stats = client.get("/api/admin/stats", headers=admin_headers).json()["data"]
    assert stats["confirmedBookings"] == 1
    assert stats["totalBookings"] == 1
    assert stats["revenue"] == 6000

    res = client.put(f"/api/bookings/{booking['id']}", json={"status": "cancelled"}, headers=headers)
    assert res.status_code == 200
    assert res.json()["data"]["status"] == "cancelled"

    stats = client.get("/api/admin/stats", headers=admin_headers).json()["data"]
    assert stats["confirmedBookings"] == 0
    assert stats["totalBookings"] == 1
    assert stats["revenue"] == 0


def test_total_price_is_a_snapshot(client, admin_headers, register, make_tour, booking_payload):
    tour = make_tour(price=1000)
    user, headers = register()
    client.post("/api/bookings", json=booking_payload(user["id"], tour["id"], participants=2), headers=headers)
    client.put(f"/api/tours/{tour['id']}", json={"price": 5000}, headers=admin_headers)
    bookings = client.get(f"/api/bookings/user/{user['id']}", headers=headers).json()["data"]
    assert bookings[0]["totalPrice"] == 2000


@pytest.mark.parametrize("participants", [0, 11])
def test_participants_out_of_range_rejected(client, register, make_tour, booking_payload, participants):
    tour = make_tour()
    user, headers = register()
    res = client.post("/api/bookings", json=booking_payload(user["id"], tour["id"], participants=participants), headers=headers)
    assert res.status_code == 400
    assert res.json()["message"] == "Validation failed"


def test_past_travel_date_rejected_but_today_allowed(client, register, make_tour, booking_payload):
    tour = make_tour()
    user, headers = register()
    yesterday = (date.today() - timedelta(days=1)).isoformat()
    res = client.post("/api/bookings", json=booking_payload(user["id"], tour["id"], travelDate=yesterday), headers=headers)
    assert res.status_code == 400
    assert "Travel date cannot be in the past" in res.json()["errors"]

    today = date.today().isoformat()
    res = client.post("/api/bookings", json=booking_payload(user["id"], tour["id"], travelDate=today), headers=headers)
    assert res.status_code == 201


def test_bad_contact_number_rejected(client, register, make_tour, booking_payload):
    tour = make_tour()
    user, headers = register()
    res = client.post("/api/bookings", json=booking_payload(user["id"], tour["id"], contactNumber="12345"), headers=headers)
    assert res.status_code == 400
    assert "Contact number must be 10 digits" in res.json()["errors"]


def test_missing_contact_falls_back_to_profile(client, register, make_tour, booking_payload):
    tour = make_tour()
    user, headers = register(phone="9000000001")
    payload = booking_payload(user["id"], tour["id"])
    del payload["contactNumber"]
    booking = client.post("/api/bookings", json=payload, headers=headers).json()["data"]
    assert booking["contactNumber"] == "9000000001"
    assert booking["email"] == user["email"]


def test_booking_unknown_tour_is_404(client, register, booking_payload):
    user, headers = register()
    res = client.post("/api/bookings", json=booking_payload(user["id"], "0123456789abcdef01234567"), headers=headers)
    assert res.status_code == 404


def test_cannot_book_for_another_user(client, register, make_tour, booking_payload):
    tour = make_tour()
    other, _ = register(email="other@example.com")
    _, headers = register(email="me@example.com")
    res = client.post("/api/bookings", json=booking_payload(other["id"], tour["id"]), headers=headers)
    assert res.status_code == 403


def test_idempotency_key_replay_returns_original(client, mongo, register, make_tour, booking_payload):
    tour = make_tour()
    user, headers = register()
    keyed = {**headers, "Idempotency-Key": "k-123"}
    first = client.post("/api/bookings", json=booking_payload(user["id"], tour["id"]), headers=keyed)
    second = client.post("/api/bookings", json=booking_payload(user["id"], tour["id"]), headers=keyed)
    assert first.status_code == 201
    assert second.status_code == 200
    assert second.json()["replayed"] is True
    assert second.json()["data"]["id"] == first.json()["data"]["id"]
    assert mongo["booking"].count_documents({}) == 1

    third = client.post("/api/bookings", json=booking_payload(user["id"], tour["id"]), headers={**headers, "Idempotency-Key": "k-456"})
    assert third.status_code == 201
    assert mongo["booking"].count_documents({}) == 2


def test_concurrent_retry_with_same_key_creates_one_booking(client, mongo, monkeypatch, register, make_tour, booking_payload):
    tour = make_tour()
    user, headers = register()
    real_lookup = main.find_keyed_booking
    lookups = []

    def in_flight_lookup(user_id, key):
        # Both requests pass the pre-insert lookup before either has stored its booking
        lookups.append(key)
        return None if len(lookups) <= 2 else real_lookup(user_id, key)

    monkeypatch.setattr(main, "find_keyed_booking", in_flight_lookup)
    keyed = {**headers, "Idempotency-Key": "k-race"}
    first = client.post("/api/bookings", json=booking_payload(user["id"], tour["id"]), headers=keyed)
    second = client.post("/api/bookings", json=booking_payload(user["id"], tour["id"]), headers=keyed)

    assert first.status_code == 201
    assert second.status_code == 200
    assert second.json()["replayed"] is True
    assert second.json()["data"]["id"] == first.json()["data"]["id"]
    assert mongo["booking"].count_documents({"idempotencyKey": "k-race"}) == 1


def test_bookings_without_key_are_not_deduplicated(client, mongo, register, make_tour, booking_payload):
    tour = make_tour()
    user, headers = register()
    for _ in range(2):
        assert client.post("/api/bookings", json=booking_payload(user["id"], tour["id"]), headers=headers).status_code == 201
    assert mongo["booking"].count_documents({"user": user["id"]}) == 2


def test_owner_can_only_cancel(client, register, make_tour, booking_payload):
    tour = make_tour()
    user, headers = register()
    booking = client.post("/api/bookings", json=booking_payload(user["id"], tour["id"]), headers=headers).json()["data"]

    res = client.put(f"/api/bookings/{booking['id']}", json={"status": "completed"}, headers=headers)
    assert res.status_code == 403
    assert client.put(f"/api/bookings/{booking['id']}", json={"status": "cancelled"}, headers=headers).status_code == 200
    res = client.put(f"/api/bookings/{booking['id']}", json={"status": "confirmed"}, headers=headers)
    assert res.status_code == 403


def test_stranger_cannot_touch_booking(client, register, make_tour, booking_payload):
    tour = make_tour()
    user, headers = register(email="owner@example.com")
    _, stranger = register(email="stranger@example.com")
    booking = client.post("/api/bookings", json=booking_payload(user["id"], tour["id"]), headers=headers).json()["data"]
    assert client.put(f"/api/bookings/{booking['id']}", json={"status": "cancelled"}, headers=stranger).status_code == 403
    assert client.delete(f"/api/bookings/{booking['id']}", headers=stranger).status_code == 403
    assert client.get(f"/api/bookings/user/{user['id']}", headers=stranger).status_code == 403


def test_admin_can_set_any_status(client, admin_headers, register, make_tour, booking_payload):
    tour = make_tour()
    user, headers = register()
    booking = client.post("/api/bookings", json=booking_payload(user["id"], tour["id"]), headers=headers).json()["data"]
    for status in ("cancelled", "confirmed", "pending", "completed"):
        res = client.put(f"/api/admin/bookings/{booking['id']}/status", json={"status": status}, headers=admin_headers)
        assert res.status_code == 200
        assert res.json()["data"]["status"] == status


def test_invalid_status_rejected(client, admin_headers, register, make_tour, booking_payload):
    tour = make_tour()
    user, headers = register()
    booking = client.post("/api/bookings", json=booking_payload(user["id"], tour["id"]), headers=headers).json()["data"]
    res = client.put(f"/api/bookings/{booking['id']}", json={"status": "lost"}, headers=admin_headers)
    assert res.status_code == 400


def test_user_can_list_and_delete_own_bookings(client, register, make_tour, booking_payload):
    tour = make_tour(title="Varanasi")
    user, headers = register()
    booking = client.post("/api/bookings", json=booking_payload(user["id"], tour["id"]), headers=headers).json()["data"]

    listing = client.get(f"/api/bookings/user/{user['id']}", headers=headers).json()
    assert listing["count"] == 1
    assert listing["confirmedCount"] == 1
    assert listing["data"][0]["tour"]["title"] == "Varanasi"

    assert client.delete(f"/api/bookings/{booking['id']}", headers=headers).status_code == 200
    assert client.get(f"/api/bookings/user/{user['id']}", headers=headers).json()["count"] == 0
    assert client.delete(f"/api/bookings/{booking['id']}", headers=headers).status_code == 404


def test_all_bookings_list_is_admin_only(client, admin_headers, register, make_tour, booking_payload):
    tour = make_tour()
    user, headers = register()
    client.post("/api/bookings", json=booking_payload(user["id"], tour["id"]), headers=headers)
    assert client.get("/api/bookings", headers=headers).status_code == 403
    body = client.get("/api/bookings", headers=admin_headers).json()
    assert body["count"] == 1
    assert body["data"][0]["userName"] == user["name"]


def test_booking_of_deleted_tour_still_listed(client, admin_headers, register, make_tour, booking_payload):
    tour = make_tour()
    user, headers = register()
    client.post("/api/bookings", json=booking_payload(user["id"], tour["id"]), headers=headers)
    client.delete(f"/api/tours/{tour['id']}", headers=admin_headers)
    data = client.get(f"/api/bookings/user/{user['id']}", headers=headers).json()["data"]
    assert data[0]["tourTitle"] == "Tour not found"
    assert data[0]["tourId"] is None
