from __future__ import annotations

import json
from datetime import date

import pytest

from app.cemetery.burials import (
    confirm_from_reservation,
    create_burial_record,
    delete_burial_record,
    edit_burial_record,
)
from app.cemetery.coordinator import set_plot_maintenance
from app.cemetery.reservations import (
    approve_reservation,
    create_reservation,
    upload_payment_proof,
    validate_payment,
)
from app.core.errors import Conflict, InvalidInput, NotFound
from app.core.extensions import db
from app.core.models import BurialRecord, Plot, PlotStatus, Reservation, ReservationStatus

DETAILS = {
    "deceased_name": "Maria Santos",
    "birth_date": "1940-02-11",
    "death_date": "2024-01-03",
    "burial_date": "2024-01-06",
    "epitaph": "Forever in our hearts",
}


def _plot(plot_id: int) -> Plot:
    return db.session.get(Plot, plot_id)


def _approved_reservation(plot_id: int, holder_id: int, admin_id: int):
    reservation = create_reservation(plot_id, holder_id)
    upload_payment_proof(reservation.id, holder_id, "receipts/r.pdf")
    validate_payment(reservation.id, admin_id)
    return approve_reservation(reservation.id, admin_id)


def test_create_burial_record_occupies_plot(app, staff, plot_ids):
    pid = plot_ids["A-01-01"]
    record = create_burial_record(pid, DETAILS, staff.user_id)

    assert len(record.uid) == 5
    assert record.is_active
    plot = _plot(pid)
    assert plot.status == PlotStatus.OCCUPIED
    assert plot.occupant_name == "Maria Santos"
    assert plot.occupant_death_date == date(2024, 1, 3)

    with pytest.raises(Conflict, match="already occupied"):
        create_burial_record(pid, {"deceased_name": "Someone Else"})
    assert BurialRecord.query.filter_by(plot_id=pid).count() == 1


def test_create_burial_record_validation(app, plot_ids):
    pid = plot_ids["A-01-02"]
    with pytest.raises(InvalidInput):
        create_burial_record(pid, {"deceased_name": " "})
    with pytest.raises(InvalidInput):
        create_burial_record(pid, {"deceased_name": "X", "birth_date": "2020-01-01", "death_date": "2019-01-01"})
    with pytest.raises(NotFound):
        create_burial_record(pid, {"deceased_name": "X", "holder_id": 9999})
    assert _plot(pid).status == PlotStatus.AVAILABLE


def test_direct_burial_on_reserved_plot_blocks_approval(app, admin, ana, plot_ids):
    pid = plot_ids["A-02-02"]
    reservation = create_reservation(pid, ana.user_id)
    upload_payment_proof(reservation.id, ana.user_id, "receipts/r.pdf")
    validate_payment(reservation.id, admin.user_id)

    create_burial_record(pid, DETAILS, admin.user_id)
    assert _plot(pid).status == PlotStatus.OCCUPIED

    with pytest.raises(Conflict, match="occupied"):
        approve_reservation(reservation.id, admin.user_id)


def test_confirm_from_reservation(app, admin, ana, plot_ids):
    pid = plot_ids["B-01-01"]
    reservation = _approved_reservation(pid, ana.user_id, admin.user_id)

    with pytest.raises(InvalidInput, match="Deceased details"):
        confirm_from_reservation(reservation.id, admin.user_id)

    record = confirm_from_reservation(reservation.id, admin.user_id, DETAILS)
    assert record.reservation_id == reservation.id
    assert record.holder_id == ana.user_id
    assert db.session.get(Reservation, reservation.id).status == ReservationStatus.COMPLETED
    assert _plot(pid).status == PlotStatus.OCCUPIED

    with pytest.raises(Conflict):
        confirm_from_reservation(reservation.id, admin.user_id, DETAILS)


def test_confirm_requires_approved_reservation(app, admin, ana, plot_ids):
    reservation = create_reservation(plot_ids["B-01-02"], ana.user_id)
    with pytest.raises(Conflict, match="must be approved"):
        confirm_from_reservation(reservation.id, admin.user_id, DETAILS)


def test_edit_moves_record_between_plots(app, admin, plot_ids):
    source, target, busy = plot_ids["A-01-01"], plot_ids["A-01-02"], plot_ids["A-01-03"]
    record = create_burial_record(source, DETAILS, admin.user_id)
    create_burial_record(busy, {"deceased_name": "Jose Reyes"}, admin.user_id)

    with pytest.raises(Conflict, match="occupied"):
        edit_burial_record(record.id, {"plot_id": busy})

    record = edit_burial_record(record.id, {"plot_id": target, "epitaph": "Rest"}, admin.user_id)
    assert record.plot_id == target
    assert record.epitaph == "Rest"
    assert _plot(source).status == PlotStatus.AVAILABLE
    assert _plot(source).occupant_name is None
    assert _plot(target).status == PlotStatus.OCCUPIED
    assert _plot(target).occupant_name == "Maria Santos"


def test_edit_name_resyncs_projection_and_deactivation_releases(app, admin, plot_ids):
    pid = plot_ids["B-02-02"]
    record = create_burial_record(pid, DETAILS, admin.user_id)

    edit_burial_record(record.id, {"deceased_name": "Maria S. Santos"})
    assert _plot(pid).occupant_name == "Maria S. Santos"

    with pytest.raises(InvalidInput):
        edit_burial_record(record.id, {"burial_date": "2023-12-01"})

    edit_burial_record(record.id, {"is_active": False})
    assert _plot(pid).status == PlotStatus.AVAILABLE
    assert _plot(pid).occupant_name is None


def test_delete_last_record_releases_plot(app, admin, plot_ids):
    pid = plot_ids["B-02-03"]
    record_id = create_burial_record(pid, DETAILS, admin.user_id).id
    delete_burial_record(record_id, admin.user_id)

    assert _plot(pid).status == PlotStatus.AVAILABLE
    assert BurialRecord.query.filter_by(plot_id=pid).count() == 0
    with pytest.raises(NotFound):
        delete_burial_record(record_id)


def test_maintenance_blocks_and_release(app, admin, ana, plot_ids):
    pid = plot_ids["A-02-03"]
    set_plot_maintenance(pid, True, admin.user_id)
    assert _plot(pid).status == PlotStatus.MAINTENANCE

    with pytest.raises(Conflict, match="maintenance"):
        create_reservation(pid, ana.user_id)
    with pytest.raises(Conflict, match="maintenance"):
        create_burial_record(pid, DETAILS)

    set_plot_maintenance(pid, False, admin.user_id)
    assert _plot(pid).status == PlotStatus.AVAILABLE

    create_reservation(pid, ana.user_id)
    with pytest.raises(Conflict, match="reserved"):
        set_plot_maintenance(pid, True, admin.user_id)


def test_edit_shifts_birth_and_death_together(app, admin, plot_ids):
    pid = plot_ids["A-02-01"]
    record = create_burial_record(
        pid,
        {"deceased_name": "Elena Vidal", "birth_date": "2000-01-01", "death_date": "2010-01-01"},
        admin.user_id,
    )

    record = edit_burial_record(record.id, {"birth_date": "2015-01-01", "death_date": "2020-01-01"})
    assert record.birth_date == date(2015, 1, 1)
    assert record.death_date == date(2020, 1, 1)
    assert _plot(pid).occupant_birth_date == date(2015, 1, 1)
    assert _plot(pid).occupant_death_date == date(2020, 1, 1)

    with pytest.raises(InvalidInput, match="before birth_date"):
        edit_burial_record(record.id, {"birth_date": "2021-01-01", "burial_date": "2022-01-01"})
    assert db.session.get(BurialRecord, record.id).birth_date == date(2015, 1, 1)


def test_edit_parses_string_flags_and_ids(app, admin, plot_ids):
    pid = plot_ids["B-01-03"]
    record = create_burial_record(pid, DETAILS, admin.user_id)

    edit_burial_record(record.id, {"is_active": "false"})
    assert db.session.get(BurialRecord, record.id).is_active is False
    assert _plot(pid).status == PlotStatus.AVAILABLE

    edit_burial_record(record.id, {"is_active": "1"})
    assert _plot(pid).status == PlotStatus.OCCUPIED

    with pytest.raises(InvalidInput, match="Invalid plot_id"):
        edit_burial_record(record.id, {"plot_id": "B-1"})
    with pytest.raises(InvalidInput, match="Invalid holder_id"):
        edit_burial_record(record.id, {"holder_id": "abc"})
    assert db.session.get(BurialRecord, record.id).plot_id == pid


def test_qr_token_follows_the_record(app, admin, plot_ids):
    source, target = plot_ids["A-01-01"], plot_ids["A-01-02"]
    record = create_burial_record(source, DETAILS, admin.user_id)

    payload = json.loads(record.qr_token)
    assert payload["_type"] == "burial_record"
    assert payload["id"] == record.id
    assert payload["uid"] == record.uid
    assert payload["plot_code"] == "A-01-01"
    assert payload["death_date"] == "2024-01-03"
    assert payload["is_active"] is True
    assert "family_contact" not in payload

    record = edit_burial_record(record.id, {"plot_id": target, "deceased_name": "Maria Santos Gil"})
    payload = json.loads(record.qr_token)
    assert payload["plot_id"] == target
    assert payload["plot_code"] == "A-01-02"
    assert payload["deceased_name"] == "Maria Santos Gil"
