from __future__ import annotations

import json
import logging
from collections.abc import Mapping

from sqlalchemy import select, update

from app.cemetery.coordinator import ensure_plot_free_of, locked_plot, locked_plots, refresh_plot
from app.cemetery.reservations import complete_reservation, locked_reservation, reservation_by_id
from app.core.errors import Conflict, InvalidInput, NotFound
from app.core.extensions import db
from app.core.models import (
    DATE_FIELDS,
    BurialRecord,
    BurialRequest,
    BurialRequestStatus,
    BurialSchedule,
    PaymentStatus,
    Plot,
    PlotStatus,
    ReservationStatus,
    User,
    utcnow,
)
from app.core.utils import (
    clean_text,
    generate_uid,
    iso,
    parse_bool,
    parse_optional_date,
    parse_optional_id,
)

logger = logging.getLogger(__name__)

MAX_UID_ATTEMPTS = 10
_TEXT_FIELDS = ("headstone_type", "epitaph", "memorial_text", "photo_ref")


def burial_by_id(record_id: int) -> BurialRecord:
    record = db.session.get(BurialRecord, record_id)
    if not record:
        raise NotFound("Burial record not found")
    return record


def locked_record(record_id: int) -> BurialRecord:
    record = db.session.execute(
        select(BurialRecord)
        .where(BurialRecord.id == record_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if record is None:
        raise NotFound("Burial record not found")
    return record


def _unique_uid() -> str:
    for _ in range(MAX_UID_ATTEMPTS):
        candidate = generate_uid()
        taken = db.session.execute(select(BurialRecord.id).where(BurialRecord.uid == candidate)).first()
        if not taken:
            return candidate
    raise Conflict("Could not allocate a burial record uid, try again")


def record_fields(details: Mapping[str, object], *, partial: bool = False) -> dict[str, object]:
    """Normalize a burial record payload into model attributes."""
    fields: dict[str, object] = {}
    if not partial or "deceased_name" in details:
        name = clean_text(details.get("deceased_name"))
        if not name:
            raise InvalidInput("deceased_name is required")
        fields["deceased_name"] = name
    for key in DATE_FIELDS:
        if not partial or key in details:
            fields[key] = parse_optional_date(details.get(key), key)
    for key in _TEXT_FIELDS:
        if key in details:
            fields[key] = clean_text(details.get(key)) or None
    holder_id = parse_optional_id(details.get("holder_id"), "holder_id")
    if holder_id is not None:
        if not db.session.get(User, holder_id):
            raise NotFound("Family contact not found")
        fields["holder_id"] = holder_id
    if partial and "is_active" in details:
        fields["is_active"] = parse_bool(details.get("is_active"))
    return fields


def build_qr_payload(record: BurialRecord, plot: Plot) -> str:
    """JSON snapshot of the record printed on the grave's QR code."""
    snapshot = {
        "_type": "burial_record",
        "id": record.id,
        "uid": record.uid,
        "plot_id": plot.id,
        "plot_code": plot.plot_code,
        "deceased_name": record.deceased_name,
        "birth_date": iso(record.birth_date),
        "death_date": iso(record.death_date),
        "burial_date": iso(record.burial_date),
        "family_contact": record.holder_id,
        "headstone_type": record.headstone_type,
        "memorial_text": record.memorial_text,
        "is_active": record.is_active,
        "geometry_ref": plot.geometry_ref,
        "created_at": iso(record.created_at),
        "updated_at": iso(utcnow()),
    }
    return json.dumps({key: value for key, value in snapshot.items() if value is not None})


def _fields_from_request(request: BurialRequest) -> dict[str, object]:
    return {
        "deceased_name": request.deceased_name,
        "birth_date": request.birth_date,
        "death_date": request.death_date,
        "burial_date": request.burial_date,
        "holder_id": request.holder_id,
    }


def insert_burial_record(plot: Plot, fields: Mapping[str, object], *, reservation_id: int | None = None) -> BurialRecord:
    """Add an active record on a plot already locked by the caller."""
    record = BurialRecord(
        uid=_unique_uid(),
        plot_id=plot.id,
        reservation_id=reservation_id,
        is_active=True,
        **fields,
    )
    db.session.add(record)
    db.session.flush()
    record.qr_token = build_qr_payload(record, plot)
    return record


def create_burial_record(plot_id: int, details: Mapping[str, object], actor_id: int | None = None) -> BurialRecord:
    fields = record_fields(details)
    with locked_plot(plot_id) as plot:
        ensure_plot_free_of(plot, PlotStatus.OCCUPIED, PlotStatus.MAINTENANCE)
        record = insert_burial_record(plot, fields)
        refresh_plot(plot)
    logger.info("burial record %s created on plot %s by user %s", record.id, plot_id, actor_id)
    return record


def _open_request_for(reservation_id: int, request_id: int | None) -> BurialRequest | None:
    query = select(BurialRequest).where(BurialRequest.reservation_id == reservation_id)
    if request_id is not None:
        request = db.session.execute(query.where(BurialRequest.id == request_id)).scalar_one_or_none()
        if request is None:
            raise NotFound("Burial request not found")
        if request.status != BurialRequestStatus.PENDING:
            raise Conflict(f"Cannot confirm a {request.status.value} request")
        return request
    return db.session.execute(
        query.where(BurialRequest.status == BurialRequestStatus.PENDING)
        .order_by(BurialRequest.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def confirm_from_reservation(
    reservation_id: int,
    actor_id: int,
    details: Mapping[str, object] | None = None,
    *,
    request_id: int | None = None,
) -> BurialRecord:
    """Turn an approved, paid reservation into the plot's burial record.

    The deceased's details come from ``details`` when given, otherwise from
    the holder's pending burial request on that reservation.
    """
    plot_id = reservation_by_id(reservation_id).plot_id
    with locked_plot(plot_id) as plot:
        reservation = locked_reservation(reservation_id, plot_id)
        if reservation.status != ReservationStatus.APPROVED:
            raise Conflict("Reservation must be approved before confirming the burial")
        if reservation.payment_status != PaymentStatus.APPROVED:
            raise Conflict("Payment is not approved")
        ensure_plot_free_of(plot, PlotStatus.OCCUPIED, PlotStatus.MAINTENANCE)

        request = _open_request_for(reservation.id, request_id)
        if details:
            fields = record_fields(details)
        elif request is not None:
            fields = _fields_from_request(request)
        else:
            raise InvalidInput("Deceased details are required to confirm the burial")
        fields.setdefault("holder_id", reservation.holder_id)

        record = insert_burial_record(plot, fields, reservation_id=reservation.id)

        complete_reservation(reservation)
        if request is not None:
            request.status = BurialRequestStatus.CONFIRMED
            request.burial_record_id = record.id
            request.confirmed_at = utcnow()
            request.confirmed_by = actor_id
        refresh_plot(plot)
    logger.info("burial confirmed from reservation %s by user %s", reservation_id, actor_id)
    return record


def apply_record_edit(
    record: BurialRecord,
    fields: Mapping[str, object],
    plots: Mapping[int, Plot],
    new_plot_id: int,
) -> None:
    """Apply edits to a locked record; ``plots`` holds its old and new plots, locked."""
    fields = dict(fields)
    moving = new_plot_id != record.plot_id
    will_be_active = fields.get("is_active", record.is_active)
    if will_be_active and (moving or not record.is_active):
        ensure_plot_free_of(plots[new_plot_id], PlotStatus.OCCUPIED, PlotStatus.MAINTENANCE)

    record.assign_dates(**{key: fields.pop(key) for key in DATE_FIELDS if key in fields})
    for key, value in fields.items():
        setattr(record, key, value)
    record.plot_id = new_plot_id
    for plot in plots.values():
        refresh_plot(plot)
    record.qr_token = build_qr_payload(record, plots[new_plot_id])


def edit_burial_record(record_id: int, changes: Mapping[str, object], actor_id: int | None = None) -> BurialRecord:
    old_plot_id = burial_by_id(record_id).plot_id
    new_plot_id = parse_optional_id(changes.get("plot_id"), "plot_id")
    if new_plot_id is None:
        new_plot_id = old_plot_id
    fields = record_fields(changes, partial=True)

    with locked_plots(old_plot_id, new_plot_id) as plots:
        record = locked_record(record_id)
        if record.plot_id != old_plot_id:
            raise Conflict("Burial record changed concurrently, try again")
        apply_record_edit(record, fields, plots, new_plot_id)
    logger.info("burial record %s edited by user %s", record_id, actor_id)
    return record


def delete_burial_record(record_id: int, actor_id: int | None = None) -> BurialRecord:
    plot_id = burial_by_id(record_id).plot_id
    with locked_plot(plot_id) as plot:
        record = locked_record(record_id)
        if record.plot_id != plot_id:
            raise Conflict("Burial record changed concurrently, try again")
        for model in (BurialRequest, BurialSchedule):
            db.session.execute(
                update(model).where(model.burial_record_id == record.id).values(burial_record_id=None)
            )
        db.session.delete(record)
        refresh_plot(plot)
    logger.info("burial record %s deleted by user %s", record_id, actor_id)
    return record
