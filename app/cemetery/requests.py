from __future__ import annotations

import logging
from collections.abc import Mapping

from sqlalchemy import select

from app.cemetery.burials import confirm_from_reservation
from app.cemetery.coordinator import ensure_plot_free_of, locked_plot
from app.cemetery.reservations import latest_approved_reservation, locked_reservation, reservation_by_id
from app.core.errors import Conflict, Forbidden, InvalidInput, NotFound
from app.core.extensions import db
from app.core.models import (
    BurialRecord,
    BurialRequest,
    BurialRequestStatus,
    MaintenanceRequest,
    MaintenanceRequestStatus,
    Plot,
    PlotStatus,
    ReservationStatus,
    User,
    check_date_order,
    utcnow,
)
from app.core.utils import clean_text, parse_optional_date, parse_optional_id

logger = logging.getLogger(__name__)

MAINTENANCE_PRIORITIES = ("low", "medium", "high", "urgent")

MAINTENANCE_TRANSITIONS: dict[MaintenanceRequestStatus, set[MaintenanceRequestStatus]] = {
    MaintenanceRequestStatus.PENDING: {
        MaintenanceRequestStatus.APPROVED,
        MaintenanceRequestStatus.REJECTED,
        MaintenanceRequestStatus.CANCELLED,
    },
    MaintenanceRequestStatus.APPROVED: {
        MaintenanceRequestStatus.COMPLETED,
        MaintenanceRequestStatus.CANCELLED,
    },
    MaintenanceRequestStatus.REJECTED: set(),
    MaintenanceRequestStatus.CANCELLED: set(),
    MaintenanceRequestStatus.COMPLETED: set(),
}


def burial_request_by_id(request_id: int) -> BurialRequest:
    request = db.session.get(BurialRequest, request_id)
    if not request:
        raise NotFound("Burial request not found")
    return request


def maintenance_request_by_id(request_id: int) -> MaintenanceRequest:
    request = db.session.get(MaintenanceRequest, request_id)
    if not request:
        raise NotFound("Maintenance request not found")
    return request


def _locked_burial_request(request_id: int) -> BurialRequest:
    request = db.session.execute(
        select(BurialRequest)
        .where(BurialRequest.id == request_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if request is None:
        raise NotFound("Burial request not found")
    return request


def _locked_maintenance_request(request_id: int) -> MaintenanceRequest:
    request = db.session.execute(
        select(MaintenanceRequest)
        .where(MaintenanceRequest.id == request_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if request is None:
        raise NotFound("Maintenance request not found")
    return request


def submit_burial_request(
    holder_id: int,
    details: Mapping[str, object],
    reservation_id: int | None = None,
) -> BurialRequest:
    """Ask for a burial on a plot the holder has an approved reservation for."""
    name = clean_text(details.get("deceased_name"))
    if not name:
        raise InvalidInput("deceased_name is required")
    birth = parse_optional_date(details.get("birth_date"), "birth_date")
    death = parse_optional_date(details.get("death_date"), "death_date")
    burial = parse_optional_date(details.get("burial_date"), "burial_date")
    check_date_order(birth, death, burial)

    if reservation_id is not None:
        reservation = reservation_by_id(reservation_id)
    else:
        reservation = latest_approved_reservation(holder_id)
        if reservation is None:
            raise Conflict("No approved reservation found for the burial request")
    plot_id = reservation.plot_id

    with locked_plot(plot_id) as plot:
        reservation = locked_reservation(reservation.id, plot_id)
        if reservation.holder_id != holder_id:
            raise Forbidden("Only the reservation holder can request a burial")
        if reservation.status != ReservationStatus.APPROVED:
            raise Conflict("Reservation must be approved before requesting a burial")
        ensure_plot_free_of(plot, PlotStatus.OCCUPIED, PlotStatus.MAINTENANCE)
        pending = db.session.execute(
            select(BurialRequest.id).where(
                BurialRequest.plot_id == plot.id,
                BurialRequest.status == BurialRequestStatus.PENDING,
            )
        ).first()
        if pending:
            raise Conflict("A burial request is already pending for this plot")

        request = BurialRequest(
            plot_id=plot.id,
            reservation_id=reservation.id,
            holder_id=holder_id,
            deceased_name=name,
            birth_date=birth,
            death_date=death,
            burial_date=burial,
            special_requirements=clean_text(details.get("special_requirements")),
            status=BurialRequestStatus.PENDING,
        )
        db.session.add(request)
    logger.info("burial request %s submitted for plot %s by user %s", request.id, plot_id, holder_id)
    return request


def _close_burial_request(
    request_id: int,
    *,
    expected: BurialRequestStatus,
    target: BurialRequestStatus,
    holder_id: int | None = None,
) -> BurialRequest:
    plot_id = burial_request_by_id(request_id).plot_id
    with locked_plot(plot_id):
        request = _locked_burial_request(request_id)
        if holder_id is not None and request.holder_id != holder_id:
            raise Forbidden("Only the requester can change this burial request")
        if request.status != expected:
            raise Conflict(f"Burial request is already {request.status.value}")
        request.status = target
    return request


def cancel_burial_request(request_id: int, holder_id: int) -> BurialRequest:
    request = _close_burial_request(
        request_id,
        expected=BurialRequestStatus.PENDING,
        target=BurialRequestStatus.CANCELLED,
        holder_id=holder_id,
    )
    logger.info("burial request %s cancelled by user %s", request_id, holder_id)
    return request


def reject_burial_request(request_id: int, reviewer_id: int) -> BurialRequest:
    request = _close_burial_request(
        request_id,
        expected=BurialRequestStatus.PENDING,
        target=BurialRequestStatus.REJECTED,
    )
    logger.info("burial request %s rejected by user %s", request_id, reviewer_id)
    return request


def complete_burial_request(request_id: int, actor_id: int) -> BurialRequest:
    request = _close_burial_request(
        request_id,
        expected=BurialRequestStatus.CONFIRMED,
        target=BurialRequestStatus.COMPLETED,
    )
    logger.info("burial request %s completed by user %s", request_id, actor_id)
    return request


def confirm_burial_request(request_id: int, actor_id: int) -> BurialRecord:
    request = burial_request_by_id(request_id)
    return confirm_from_reservation(request.reservation_id, actor_id, request_id=request.id)


def create_maintenance_request(requester_id: int, payload: Mapping[str, object]) -> MaintenanceRequest:
    description = clean_text(payload.get("description"))
    if not description:
        raise InvalidInput("description is required")
    priority = clean_text(payload.get("priority")).lower() or "medium"
    if priority not in MAINTENANCE_PRIORITIES:
        raise InvalidInput("Invalid priority")

    plot_id = parse_optional_id(payload.get("plot_id"), "plot_id")
    if plot_id is not None and not db.session.get(Plot, plot_id):
        raise NotFound("Plot not found")

    request = MaintenanceRequest(
        plot_id=plot_id,
        requester_id=requester_id,
        description=description,
        priority=priority,
        preferred_date=parse_optional_date(payload.get("preferred_date"), "preferred_date"),
        status=MaintenanceRequestStatus.PENDING,
    )
    db.session.add(request)
    db.session.commit()
    logger.info("maintenance request %s created by user %s", request.id, requester_id)
    return request


def transition_maintenance_request(
    request_id: int,
    new_status: str | MaintenanceRequestStatus,
    actor_id: int,
    *,
    assigned_staff_id: int | None = None,
) -> MaintenanceRequest:
    try:
        target = MaintenanceRequestStatus(new_status)
    except ValueError as exc:
        raise InvalidInput("Invalid maintenance request status") from exc
    request = _locked_maintenance_request(request_id)
    current = request.status
    if target not in MAINTENANCE_TRANSITIONS[current]:
        raise Conflict(f"Invalid transition: {current.value} -> {target.value}")

    if assigned_staff_id is not None:
        if not db.session.get(User, assigned_staff_id):
            raise NotFound("Staff member not found")
        request.assigned_staff_id = assigned_staff_id
    request.status = target
    if target == MaintenanceRequestStatus.COMPLETED:
        request.completed_at = utcnow()
    db.session.commit()
    logger.info(
        "maintenance request %s %s -> %s by user %s", request_id, current.value, target.value, actor_id
    )
    return request


def cancel_maintenance_request(request_id: int, requester_id: int) -> MaintenanceRequest:
    request = maintenance_request_by_id(request_id)
    if request.requester_id != requester_id:
        raise Forbidden("Only the requester can cancel this maintenance request")
    return transition_maintenance_request(request_id, MaintenanceRequestStatus.CANCELLED, requester_id)
