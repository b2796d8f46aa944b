from __future__ import annotations

import json

from app.core.extensions import db
from app.core.models import BurialRecord, Plot, PlotStatus


def test_login_rejects_bad_credentials(client):
    response = client.post("/auth/login", json={"email": "admin@cemetery.local", "password": "nope"})
    assert response.status_code == 401
    assert response.get_json() == {"error": "Invalid credentials"}


def test_api_requires_login(client):
    response = client.get("/api/plots")
    assert response.status_code == 401
    assert "error" in response.get_json()


def test_plot_listing(client, login_visitor):
    assert login_visitor().status_code == 200

    response = client.get("/api/plots")
    assert response.status_code == 200
    plots = response.get_json()
    assert len(plots) == 12
    assert plots[0]["plot_code"] == "A-01-01"
    assert plots[0]["status"] == "available"
    assert plots[0]["price"] == "45000.00"

    bad = client.get("/api/plots?status=haunted")
    assert bad.status_code == 400


def test_reservation_flow_over_http(app, client, login_visitor, login_admin, login_staff, plot_ids):
    pid = plot_ids["A-01-01"]

    login_visitor()
    created = client.post(f"/api/plots/{pid}/reservations", json={"notes": "For grandpa"})
    assert created.status_code == 201
    reservation_id = created.get_json()["id"]
    assert created.get_json()["status"] == "pending"

    again = client.post(f"/api/plots/{pid}/reservations", json={})
    assert again.status_code == 409
    assert again.get_json()["error"] == "You already have an active reservation for this plot"

    denied = client.post(f"/api/reservations/{reservation_id}/approve", json={})
    assert denied.status_code == 403

    uploaded = client.post(f"/api/reservations/{reservation_id}/payment", json={"asset_ref": "receipts/g.pdf"})
    assert uploaded.status_code == 200
    assert uploaded.get_json()["payment_status"] == "submitted"
    assert uploaded.get_json()["replaced_asset_ref"] is None

    client.post("/auth/logout")
    login_admin()
    assert client.post(f"/api/reservations/{reservation_id}/payment/validate").status_code == 200
    approved = client.post(f"/api/reservations/{reservation_id}/approve", json={})
    assert approved.status_code == 200
    assert approved.get_json()["status"] == "approved"
    assert approved.get_json()["payment_status"] == "approved"

    client.post("/auth/logout")
    login_staff()
    confirmed = client.post(
        f"/api/reservations/{reservation_id}/confirm-burial",
        json={"deceased_name": "Pedro Ruiz", "death_date": "2024-02-02"},
    )
    assert confirmed.status_code == 201
    assert confirmed.get_json()["reservation_id"] == reservation_id

    detail = client.get(f"/api/plots/{pid}").get_json()
    assert detail["plot"]["status"] == "occupied"
    assert detail["plot"]["occupant_name"] == "Pedro Ruiz"
    assert detail["active_burial"]["deceased_name"] == "Pedro Ruiz"
    assert detail["reservations"][0]["status"] == "completed"


def test_approve_payment_without_receipt_is_conflict(client, login_visitor, login_admin, plot_ids):
    login_visitor()
    reservation_id = client.post(f"/api/plots/{plot_ids['B-01-01']}/reservations", json={}).get_json()["id"]
    client.post("/auth/logout")

    login_admin()
    response = client.post(f"/api/reservations/{reservation_id}/payment/approve")
    assert response.status_code == 409
    assert "no receipt" in response.get_json()["error"]

    missing = client.post("/api/reservations/9999/payment/approve")
    assert missing.status_code == 404


def test_maintenance_toggle_and_burial_crud(app, client, login_admin, plot_ids):
    pid = plot_ids["B-02-02"]
    login_admin()

    response = client.post(f"/api/plots/{pid}/maintenance", json={"enabled": True})
    assert response.get_json()["status"] == "maintenance"
    blocked = client.post(f"/api/plots/{pid}/burials", json={"deceased_name": "Ana Gil"})
    assert blocked.status_code == 409
    client.post(f"/api/plots/{pid}/maintenance", json={"enabled": False})

    created = client.post(f"/api/plots/{pid}/burials", json={"deceased_name": "Ana Gil"})
    assert created.status_code == 201
    record_id = created.get_json()["id"]

    edited = client.patch(f"/api/burials/{record_id}", json={"epitaph": "Beloved"})
    assert edited.get_json()["epitaph"] == "Beloved"

    assert client.delete(f"/api/burials/{record_id}").status_code == 200
    assert db.session.get(Plot, pid).status == PlotStatus.AVAILABLE


def test_visitor_sees_only_own_reservations(client, login_visitor, login_second_visitor, plot_ids):
    login_visitor()
    client.post(f"/api/plots/{plot_ids['A-01-01']}/reservations", json={})
    client.post("/auth/logout")

    login_second_visitor()
    client.post(f"/api/plots/{plot_ids['A-01-02']}/reservations", json={})
    rows = client.get("/api/reservations").get_json()
    assert len(rows) == 1
    assert rows[0]["plot_id"] == plot_ids["A-01-02"]


def test_maintenance_request_endpoints(client, login_visitor, login_staff):
    login_visitor()
    created = client.post("/api/maintenance-requests", json={"description": "Fix the gate"})
    assert created.status_code == 201
    request_id = created.get_json()["id"]
    client.post("/auth/logout")

    login_staff()
    response = client.post(f"/api/maintenance-requests/{request_id}/status", json={"status": "approved"})
    assert response.get_json()["status"] == "approved"
    invalid = client.post(f"/api/maintenance-requests/{request_id}/status", json={"status": "paused"})
    assert invalid.status_code == 400


def test_malformed_ids_are_bad_requests(client, login_admin, plot_ids):
    pid = plot_ids["A-01-03"]
    login_admin()

    response = client.post(f"/api/plots/{pid}/reservations", json={"holder_id": "abc"})
    assert response.status_code == 400
    assert response.get_json() == {"error": "Invalid holder_id"}

    record_id = client.post(f"/api/plots/{pid}/burials", json={"deceased_name": "Ines Prat"}).get_json()["id"]
    moved = client.patch(f"/api/burials/{record_id}", json={"plot_id": "B-1"})
    assert moved.status_code == 400
    assert moved.get_json() == {"error": "Invalid plot_id"}

    submitted = client.post("/api/burial-requests", json={"deceased_name": "X", "reservation_id": "first"})
    assert submitted.status_code == 400
    created = client.post("/api/maintenance-requests", json={"description": "Gate", "plot_id": "A-1"})
    assert created.status_code == 400

    request_id = client.post("/api/maintenance-requests", json={"description": "Gate"}).get_json()["id"]
    reviewed = client.post(
        f"/api/maintenance-requests/{request_id}/status",
        json={"status": "approved", "assigned_staff_id": "staff"},
    )
    assert reviewed.status_code == 400
    assert reviewed.get_json() == {"error": "Invalid assigned_staff_id"}


def test_form_edit_can_deactivate_a_record(client, login_admin, plot_ids):
    pid = plot_ids["B-01-02"]
    login_admin()
    record_id = client.post(f"/api/plots/{pid}/burials", data={"deceased_name": "Ines Prat"}).get_json()["id"]

    response = client.patch(f"/api/burials/{record_id}", data={"is_active": "false"})
    assert response.status_code == 200
    assert response.get_json()["is_active"] is False
    assert db.session.get(BurialRecord, record_id).is_active is False
    assert client.get(f"/api/plots/{pid}").get_json()["plot"]["status"] == "available"

    on = client.post(f"/api/plots/{pid}/maintenance", data={"enabled": "true"})
    assert on.get_json()["status"] == "maintenance"
    off = client.post(f"/api/plots/{pid}/maintenance", data={"enabled": "0"})
    assert off.get_json()["status"] == "available"
    assert off.get_json()["under_maintenance"] is False


def test_burial_schedule_endpoints(client, login_staff, login_visitor, ana, plot_ids):
    source, target = plot_ids["A-02-01"], plot_ids["A-02-02"]
    details = {"deceased_name": "Julia Serra", "plot_id": source, "holder_id": ana.user_id, "death_date": "2024-03-01"}

    login_visitor()
    assert client.post("/api/burial-schedules", json=details).status_code == 403
    assert client.get("/api/burial-schedules").status_code == 403
    client.post("/auth/logout")

    login_staff()
    created = client.post("/api/burial-schedules", json=details)
    assert created.status_code == 201
    body = created.get_json()
    assert body["status"] == "confirmed"
    assert body["burial"]["headstone_type"] == "flat"
    assert json.loads(body["burial"]["qr_token"])["deceased_name"] == "Julia Serra"

    updated = client.patch(f"/api/burial-schedules/{body['id']}", json={"plot_id": target, "status": "completed"})
    assert updated.status_code == 200
    assert updated.get_json()["plot_id"] == target
    assert updated.get_json()["burial"]["plot_id"] == target
    assert client.get(f"/api/plots/{target}").get_json()["plot"]["occupant_name"] == "Julia Serra"
    assert client.get(f"/api/plots/{source}").get_json()["plot"]["status"] == "available"

    empty = client.patch(f"/api/burial-schedules/{body['id']}", json={})
    assert empty.status_code == 400

    listed = client.get("/api/burial-schedules?status=completed").get_json()
    assert [item["id"] for item in listed] == [body["id"]]

    deleted = client.delete(f"/api/burial-schedules/{body['id']}")
    assert deleted.get_json() == {"id": body["id"], "success": True}
    assert client.delete(f"/api/burial-schedules/{body['id']}").status_code == 404
