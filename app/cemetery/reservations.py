from __future__ import annotations

import logging

from sqlalchemy import select

from app.cemetery.coordinator import ensure_plot_free_of, locked_plot, refresh_plot
from app.core.errors import Conflict, Forbidden, InvalidInput, NotFound
from app.core.extensions import db
from app.core.models import (
    ACTIVE_RESERVATION_STATUSES,
    PaymentStatus,
    PlotStatus,
    Reservation,
    ReservationStatus,
    User,
    UserRole,
    utcnow,
)
from app.core.utils import clean_text

logger = logging.getLogger(__name__)

RESERVATION_TRANSITIONS: dict[ReservationStatus, set[ReservationStatus]] = {
    ReservationStatus.PENDING: {
        ReservationStatus.APPROVED,
        ReservationStatus.REJECTED,
        ReservationStatus.CANCELLED,
    },
    ReservationStatus.APPROVED: {ReservationStatus.CANCELLED, ReservationStatus.COMPLETED},
    ReservationStatus.REJECTED: set(),
    ReservationStatus.CANCELLED: set(),
    ReservationStatus.COMPLETED: set(),
}

# Payment counts as settled for approval once validated or approved.
SETTLED_PAYMENT_STATUSES = (PaymentStatus.VALIDATED, PaymentStatus.APPROVED)


def reservation_by_id(reservation_id: int) -> Reservation:
    reservation = db.session.get(Reservation, reservation_id)
    if not reservation:
        raise NotFound("Reservation not found")
    return reservation


def locked_reservation(reservation_id: int, plot_id: int) -> Reservation:
    reservation = db.session.execute(
        select(Reservation)
        .where(Reservation.id == reservation_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if reservation is None or reservation.plot_id != plot_id:
        raise NotFound("Reservation not found")
    return reservation


def _transition(reservation: Reservation, target: ReservationStatus) -> None:
    current = reservation.status
    if target not in RESERVATION_TRANSITIONS[current]:
        raise Conflict(f"Reservation is already {current.value}")
    reservation.status = target


def _ensure_open(reservation: Reservation, action: str) -> None:
    if reservation.is_terminal:
        raise Conflict(f"Cannot {action}: reservation is {reservation.status.value}")


def _active_holder(holder_id: int) -> User:
    holder = db.session.get(User, holder_id)
    if not holder or not holder.is_active:
        raise NotFound("Holder not found")
    return holder


def create_reservation(plot_id: int, holder_id: int, notes: str | None = None) -> Reservation:
    """Claim an available plot for ``holder_id``.

    The plot is locked from creation onwards: a pending reservation already
    turns the plot ``reserved`` and blocks every other claim until it is
    rejected, cancelled or completed.
    """
    _active_holder(holder_id)
    with locked_plot(plot_id) as plot:
        duplicate = db.session.execute(
            select(Reservation.id).where(
                Reservation.plot_id == plot.id,
                Reservation.holder_id == holder_id,
                Reservation.status.in_(ACTIVE_RESERVATION_STATUSES),
            )
        ).first()
        if duplicate:
            raise Conflict("You already have an active reservation for this plot")
        ensure_plot_free_of(plot, PlotStatus.OCCUPIED, PlotStatus.RESERVED, PlotStatus.MAINTENANCE)

        reservation = Reservation(
            plot_id=plot.id,
            holder_id=holder_id,
            status=ReservationStatus.PENDING,
            payment_status=PaymentStatus.UNPAID,
            notes=clean_text(notes),
        )
        db.session.add(reservation)
        refresh_plot(plot)
    logger.info("reservation %s created on plot %s by user %s", reservation.id, plot_id, holder_id)
    return reservation


def create_reservation_for_visitor(plot_id: int, visitor_id: int, notes: str | None = None) -> Reservation:
    visitor = _active_holder(visitor_id)
    if visitor.role != UserRole.VISITOR:
        raise InvalidInput("Reservations can only be made on behalf of a visitor")
    return create_reservation(plot_id, visitor_id, notes)


def upload_payment_proof(reservation_id: int, holder_id: int, asset_ref: str) -> tuple[Reservation, str | None]:
    """Attach a payment receipt; returns the reservation and the replaced asset ref."""
    asset_ref = clean_text(asset_ref)
    if not asset_ref:
        raise InvalidInput("A payment receipt is required")
    plot_id = reservation_by_id(reservation_id).plot_id
    with locked_plot(plot_id):
        reservation = locked_reservation(reservation_id, plot_id)
        if reservation.holder_id != holder_id:
            raise Forbidden("Only the reservation holder can upload a payment receipt")
        _ensure_open(reservation, "upload receipt")
        if reservation.payment_status == PaymentStatus.APPROVED:
            raise Conflict("Payment is already approved. Receipt can no longer be changed")
        replaced = reservation.payment_receipt_ref
        reservation.payment_receipt_ref = asset_ref
        reservation.payment_status = PaymentStatus.SUBMITTED
        reservation.payment_uploaded_at = utcnow()
        reservation.payment_validated_at = None
        reservation.payment_validated_by = None
    logger.info("payment receipt uploaded for reservation %s", reservation_id)
    return reservation, replaced if replaced != asset_ref else None


def validate_payment(reservation_id: int, validator_id: int) -> Reservation:
    plot_id = reservation_by_id(reservation_id).plot_id
    with locked_plot(plot_id):
        reservation = locked_reservation(reservation_id, plot_id)
        _ensure_open(reservation, "validate payment")
        if not reservation.payment_receipt_ref:
            raise Conflict("Cannot validate payment: no receipt uploaded")
        if reservation.payment_status == PaymentStatus.APPROVED:
            raise Conflict("Payment is already approved")
        if reservation.payment_status == PaymentStatus.REJECTED:
            raise Conflict("Payment was rejected. A new receipt is required")
        reservation.payment_status = PaymentStatus.VALIDATED
        reservation.payment_validated_at = utcnow()
        reservation.payment_validated_by = validator_id
    logger.info("payment validated for reservation %s by user %s", reservation_id, validator_id)
    return reservation


def approve_payment(reservation_id: int, approver_id: int) -> Reservation:
    plot_id = reservation_by_id(reservation_id).plot_id
    with locked_plot(plot_id):
        reservation = locked_reservation(reservation_id, plot_id)
        _ensure_open(reservation, "approve payment")
        if not reservation.payment_receipt_ref:
            raise Conflict("Cannot approve payment: no receipt uploaded")
        if reservation.payment_status not in (PaymentStatus.SUBMITTED, PaymentStatus.VALIDATED):
            raise Conflict(f"Cannot approve payment from {reservation.payment_status.value}")
        reservation.payment_status = PaymentStatus.APPROVED
        reservation.payment_approved_at = utcnow()
        reservation.payment_approved_by = approver_id
    logger.info("payment approved for reservation %s by user %s", reservation_id, approver_id)
    return reservation


def reject_payment(reservation_id: int, reviewer_id: int, notes: str | None = None) -> Reservation:
    plot_id = reservation_by_id(reservation_id).plot_id
    with locked_plot(plot_id):
        reservation = locked_reservation(reservation_id, plot_id)
        _ensure_open(reservation, "reject payment")
        if reservation.payment_status == PaymentStatus.APPROVED:
            raise Conflict("Payment is already approved")
        if not reservation.payment_receipt_ref:
            raise Conflict("Cannot reject payment: no receipt uploaded")
        reservation.payment_status = PaymentStatus.REJECTED
        reservation.payment_notes = clean_text(notes)
        reservation.reviewed_at = utcnow()
        reservation.reviewed_by = reviewer_id
    logger.info("payment rejected for reservation %s by user %s", reservation_id, reviewer_id)
    return reservation


def approve_reservation(reservation_id: int, approver_id: int, notes: str | None = None) -> Reservation:
    plot_id = reservation_by_id(reservation_id).plot_id
    with locked_plot(plot_id) as plot:
        reservation = locked_reservation(reservation_id, plot_id)
        if reservation.status != ReservationStatus.PENDING:
            raise Conflict(f"Reservation is already {reservation.status.value}")
        if not reservation.payment_receipt_ref:
            raise Conflict("No payment receipt found. The holder must upload a receipt first")
        if reservation.payment_status not in SETTLED_PAYMENT_STATUSES:
            raise Conflict("Payment must be validated first")
        ensure_plot_free_of(plot, PlotStatus.OCCUPIED, PlotStatus.MAINTENANCE)

        now = utcnow()
        _transition(reservation, ReservationStatus.APPROVED)
        if reservation.payment_status != PaymentStatus.APPROVED:
            reservation.payment_status = PaymentStatus.APPROVED
            reservation.payment_approved_at = now
            reservation.payment_approved_by = approver_id
        reservation.reviewed_at = now
        reservation.reviewed_by = approver_id
        if clean_text(notes):
            reservation.notes = clean_text(notes)

        competing = db.session.execute(
            select(Reservation).where(
                Reservation.plot_id == plot.id,
                Reservation.id != reservation.id,
                Reservation.status == ReservationStatus.PENDING,
            )
        ).scalars()
        for other in competing:
            other.status = ReservationStatus.REJECTED
            other.reviewed_at = now
            other.reviewed_by = approver_id
        refresh_plot(plot)
    logger.info("reservation %s approved by user %s", reservation_id, approver_id)
    return reservation


def reject_reservation(reservation_id: int, reviewer_id: int, notes: str | None = None) -> Reservation:
    plot_id = reservation_by_id(reservation_id).plot_id
    with locked_plot(plot_id) as plot:
        reservation = locked_reservation(reservation_id, plot_id)
        if reservation.status != ReservationStatus.PENDING:
            raise Conflict(f"Reservation is already {reservation.status.value}")
        _transition(reservation, ReservationStatus.REJECTED)
        reservation.reviewed_at = utcnow()
        reservation.reviewed_by = reviewer_id
        if clean_text(notes):
            reservation.payment_notes = clean_text(notes)
        refresh_plot(plot)
    logger.info("reservation %s rejected by user %s", reservation_id, reviewer_id)
    return reservation


def cancel_reservation(reservation_id: int, actor_id: int, *, privileged: bool = False) -> Reservation:
    plot_id = reservation_by_id(reservation_id).plot_id
    with locked_plot(plot_id) as plot:
        reservation = locked_reservation(reservation_id, plot_id)
        if not privileged and reservation.holder_id != actor_id:
            raise Forbidden("Only the reservation holder can cancel it")
        if reservation.status not in ACTIVE_RESERVATION_STATUSES:
            raise Conflict(f"Cannot cancel a {reservation.status.value} reservation")
        _transition(reservation, ReservationStatus.CANCELLED)
        refresh_plot(plot)
    logger.info("reservation %s cancelled by user %s", reservation_id, actor_id)
    return reservation


def complete_reservation(reservation: Reservation) -> None:
    """Close an approved reservation; caller must hold the plot lock."""
    _transition(reservation, ReservationStatus.COMPLETED)


def latest_approved_reservation(holder_id: int) -> Reservation | None:
    return db.session.execute(
        select(Reservation)
        .where(Reservation.holder_id == holder_id, Reservation.status == ReservationStatus.APPROVED)
        .order_by(Reservation.updated_at.desc(), Reservation.id.desc())
        .limit(1)
    ).scalar_one_or_none()
