from __future__ import annotations

from datetime import date

import pytest

from app.cemetery.coordinator import derive_status, locked_plots
from app.core.errors import Conflict, Forbidden, InvalidInput, NotFound, PlotBusy
from app.core.extensions import db
from app.core.models import BurialRecord, Plot, PlotStatus, UserRole
from app.core.permissions import CAPABILITIES, Caller, has_capability, require_capability
from app.core.utils import generate_uid, money, parse_bool, parse_id, parse_optional_date, parse_optional_id


@pytest.mark.parametrize(
    ("maintenance", "burial", "reservation", "expected"),
    [
        (False, False, False, PlotStatus.AVAILABLE),
        (False, False, True, PlotStatus.RESERVED),
        (False, True, False, PlotStatus.OCCUPIED),
        (False, True, True, PlotStatus.OCCUPIED),
        (True, True, True, PlotStatus.MAINTENANCE),
        (True, False, False, PlotStatus.MAINTENANCE),
    ],
)
def test_derive_status_precedence(maintenance, burial, reservation, expected):
    assert (
        derive_status(
            under_maintenance=maintenance,
            has_active_burial=burial,
            has_active_reservation=reservation,
        )
        == expected
    )


def test_error_status_codes():
    assert InvalidInput("x").status_code == 400
    assert Forbidden("x").status_code == 403
    assert NotFound("x").status_code == 404
    assert Conflict("x").status_code == 409
    assert isinstance(PlotBusy("x"), Conflict)
    assert isinstance(Conflict("x"), ValueError)


def test_capabilities_by_role():
    visitor = Caller(user_id=1, role=UserRole.VISITOR)
    staff = Caller(user_id=2, role=UserRole.STAFF)
    admin = Caller(user_id=3, role=UserRole.ADMIN)

    assert has_capability(visitor, "reservation.create")
    assert not has_capability(visitor, "reservation.approve")
    assert not has_capability(staff, "reservation.approve_payment")
    assert has_capability(staff, "burial.confirm")
    assert has_capability(admin, "burial.delete")
    assert not has_capability(staff, "burial.delete")
    assert has_capability(staff, "burial_schedule.create")
    assert not has_capability(visitor, "burial_schedule.view")
    assert all(UserRole.SUPER_ADMIN in roles for roles in CAPABILITIES.values())

    with pytest.raises(Forbidden):
        require_capability(visitor, "plot.maintenance")
    with pytest.raises(Forbidden):
        require_capability(None, "plot.view")
    with pytest.raises(KeyError):
        has_capability(admin, "plot.demolish")


def test_parse_optional_date():
    assert parse_optional_date(None, "d") is None
    assert parse_optional_date("", "d") is None
    assert parse_optional_date("2024-03-05T10:00:00", "d") == date(2024, 3, 5)
    with pytest.raises(InvalidInput):
        parse_optional_date("05/03/2024", "death_date")


def test_parse_ids_and_flags():
    assert parse_id(" 7 ", "plot_id") == 7
    assert parse_id(12, "plot_id") == 12
    assert parse_optional_id("", "plot_id") is None
    assert parse_optional_id(None, "plot_id") is None
    for bad in ("abc", "B-1", "1.5", True):
        with pytest.raises(InvalidInput, match="Invalid holder_id"):
            parse_id(bad, "holder_id")

    assert parse_bool("true") and parse_bool("On") and parse_bool(1)
    assert not parse_bool("false")
    assert not parse_bool("0")
    assert not parse_bool("")
    assert not parse_bool(None)


def test_money_and_uid():
    assert money(None) is None
    assert money(45000) == "45000.00"
    uid = generate_uid()
    assert len(uid) == 5
    assert uid.isalnum() and uid.upper() == uid


def test_burial_record_date_order_is_validated():
    with pytest.raises(InvalidInput):
        BurialRecord(deceased_name="X", birth_date=date(2000, 1, 1), death_date=date(1999, 1, 1))
    with pytest.raises(InvalidInput):
        BurialRecord(deceased_name="X", death_date=date(2020, 5, 2), burial_date=date(2020, 5, 1))
    record = BurialRecord(
        deceased_name="X",
        birth_date=date(1950, 1, 1),
        death_date=date(2020, 5, 1),
        burial_date=date(2020, 5, 3),
    )
    assert record.burial_date == date(2020, 5, 3)


def test_assign_dates_checks_only_the_final_combination():
    record = BurialRecord(deceased_name="X", birth_date=date(2000, 1, 1), death_date=date(2010, 1, 1))

    record.assign_dates(birth_date=date(2015, 1, 1), death_date=date(2020, 1, 1))
    assert (record.birth_date, record.death_date) == (date(2015, 1, 1), date(2020, 1, 1))

    with pytest.raises(InvalidInput, match="before birth_date"):
        record.assign_dates(death_date=date(2014, 1, 1))
    assert record.death_date == date(2020, 1, 1)
    with pytest.raises(InvalidInput):
        record.birth_date = date(2021, 1, 1)


def test_locked_plots_unknown_plot(app):
    with pytest.raises(NotFound):
        with locked_plots(9999):
            pass


def test_locked_plots_rolls_back_on_error(app, plot_ids):
    pid = plot_ids["A-01-01"]
    with pytest.raises(RuntimeError):
        with locked_plots(pid) as plots:
            plots[pid].geometry_ref = "changed"
            raise RuntimeError("boom")
    assert db.session.get(Plot, pid).geometry_ref == "plots/A-01-01"


def test_locked_plots_yields_ascending_unique(app, plot_ids):
    a, b = plot_ids["A-01-01"], plot_ids["B-02-03"]
    with locked_plots(b, a, b) as plots:
        assert list(plots) == sorted({a, b})
