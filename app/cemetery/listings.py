"""Read-only listings; no plot locks, read committed data."""
from __future__ import annotations

from sqlalchemy import case, select

from app.core.errors import InvalidInput, NotFound
from app.core.extensions import db
from app.core.models import (
    BurialRecord,
    BurialRequest,
    BurialSchedule,
    BurialScheduleStatus,
    MaintenanceRequest,
    MaintenanceRequestStatus,
    Plot,
    PlotStatus,
    Reservation,
)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


def _status_filter(enum_cls, value):
    if value in (None, ""):
        return None
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError as exc:
        raise InvalidInput(f"Invalid status filter: {value}") from exc


def _page(limit, offset) -> tuple[int, int]:
    try:
        limit = int(limit) if limit not in (None, "") else DEFAULT_PAGE_SIZE
        offset = int(offset) if offset not in (None, "") else 0
    except (TypeError, ValueError) as exc:
        raise InvalidInput("limit and offset must be integers") from exc
    if limit < 1 or offset < 0:
        raise InvalidInput("limit must be positive and offset non-negative")
    return min(limit, MAX_PAGE_SIZE), offset


def list_plots(status: str | PlotStatus | None = None) -> list[Plot]:
    query = select(Plot).order_by(Plot.section_name, Plot.row_num, Plot.col_num, Plot.id)
    wanted = _status_filter(PlotStatus, status)
    if wanted is not None:
        query = query.where(Plot.status == wanted)
    return list(db.session.execute(query).scalars())


def plot_detail(plot_id: int) -> dict[str, object]:
    plot = db.session.get(Plot, plot_id)
    if not plot:
        raise NotFound("Plot not found")
    active_burial = db.session.execute(
        select(BurialRecord).where(BurialRecord.plot_id == plot.id, BurialRecord.is_active.is_(True))
    ).scalar_one_or_none()
    reservations = list(
        db.session.execute(
            select(Reservation)
            .where(Reservation.plot_id == plot.id)
            .order_by(Reservation.created_at.desc(), Reservation.id.desc())
        ).scalars()
    )
    return {"plot": plot, "active_burial": active_burial, "reservations": reservations}


def list_reservations(holder_id: int | None = None) -> list[Reservation]:
    query = select(Reservation).order_by(Reservation.created_at.desc(), Reservation.id.desc())
    if holder_id is not None:
        query = query.where(Reservation.holder_id == holder_id)
    return list(db.session.execute(query).scalars())


def list_burial_records(family_id: int | None = None, limit=None, offset=None) -> list[BurialRecord]:
    limit, offset = _page(limit, offset)
    query = select(BurialRecord).order_by(BurialRecord.burial_date.desc(), BurialRecord.id.desc())
    if family_id is not None:
        query = query.where(BurialRecord.holder_id == family_id)
    return list(db.session.execute(query.limit(limit).offset(offset)).scalars())


def list_burial_requests(holder_id: int | None = None) -> list[BurialRequest]:
    query = select(BurialRequest).order_by(BurialRequest.created_at.desc(), BurialRequest.id.desc())
    if holder_id is not None:
        query = query.where(BurialRequest.holder_id == holder_id)
    return list(db.session.execute(query).scalars())


def list_maintenance_requests(
    requester_id: int | None = None,
    status: str | MaintenanceRequestStatus | None = None,
) -> list[MaintenanceRequest]:
    query = select(MaintenanceRequest).order_by(MaintenanceRequest.created_at.desc(), MaintenanceRequest.id.desc())
    if requester_id is not None:
        query = query.where(MaintenanceRequest.requester_id == requester_id)
    wanted = _status_filter(MaintenanceRequestStatus, status)
    if wanted is not None:
        query = query.where(MaintenanceRequest.status == wanted)
    return list(db.session.execute(query).scalars())


def list_burial_schedules(status: str | BurialScheduleStatus | None = None) -> list[BurialSchedule]:
    # Confirmed schedules first, newest first within each status.
    confirmed_first = case((BurialSchedule.status == BurialScheduleStatus.CONFIRMED, 0), else_=1)
    query = select(BurialSchedule).order_by(
        confirmed_first, BurialSchedule.created_at.desc(), BurialSchedule.id.desc()
    )
    wanted = _status_filter(BurialScheduleStatus, status)
    if wanted is not None:
        query = query.where(BurialSchedule.status == wanted)
    return list(db.session.execute(query).scalars())
