"""Caller-facing cemetery operations.

Each function checks exactly one capability for the caller and delegates to
the reservation, burial and request managers, which own the plot locking.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping

from app.cemetery import burials, listings, requests, reservations, schedules
from app.cemetery.coordinator import set_plot_maintenance
from app.core.permissions import Caller, has_capability, require_capability
from app.core.utils import parse_optional_id

logger = logging.getLogger(__name__)


def reserve(caller: Caller, plot_id: int, notes: str | None = None, holder_id: object = None):
    holder_id = parse_optional_id(holder_id, "holder_id")
    if holder_id is not None and holder_id != caller.user_id:
        require_capability(caller, "reservation.create_for_holder")
        logger.info("user %s reserving plot %s for holder %s", caller.user_id, plot_id, holder_id)
        return reservations.create_reservation_for_visitor(plot_id, holder_id, notes)
    require_capability(caller, "reservation.create")
    return reservations.create_reservation(plot_id, caller.user_id, notes)


def upload_payment_proof(caller: Caller, reservation_id: int, asset_ref: str):
    require_capability(caller, "reservation.upload_payment")
    reservation, replaced = reservations.upload_payment_proof(reservation_id, caller.user_id, asset_ref)
    if replaced:
        logger.info("payment receipt %s replaced on reservation %s", replaced, reservation_id)
    return reservation, replaced


def validate_payment(caller: Caller, reservation_id: int):
    require_capability(caller, "reservation.validate_payment")
    return reservations.validate_payment(reservation_id, caller.user_id)


def approve_payment(caller: Caller, reservation_id: int):
    require_capability(caller, "reservation.approve_payment")
    return reservations.approve_payment(reservation_id, caller.user_id)


def reject_payment(caller: Caller, reservation_id: int, notes: str | None = None):
    require_capability(caller, "reservation.reject_payment")
    return reservations.reject_payment(reservation_id, caller.user_id, notes)


def approve_reservation(caller: Caller, reservation_id: int, notes: str | None = None):
    require_capability(caller, "reservation.approve")
    return reservations.approve_reservation(reservation_id, caller.user_id, notes)


def reject_reservation(caller: Caller, reservation_id: int, notes: str | None = None):
    require_capability(caller, "reservation.reject")
    return reservations.reject_reservation(reservation_id, caller.user_id, notes)


def cancel_reservation(caller: Caller, reservation_id: int):
    require_capability(caller, "reservation.cancel")
    return reservations.cancel_reservation(reservation_id, caller.user_id, privileged=caller.is_privileged)


def submit_burial_request(caller: Caller, details: Mapping[str, object], reservation_id: int | None = None):
    require_capability(caller, "burial_request.submit")
    return requests.submit_burial_request(caller.user_id, details, reservation_id)


def cancel_burial_request(caller: Caller, request_id: int):
    require_capability(caller, "burial_request.cancel")
    return requests.cancel_burial_request(request_id, caller.user_id)


def reject_burial_request(caller: Caller, request_id: int):
    require_capability(caller, "burial_request.reject")
    return requests.reject_burial_request(request_id, caller.user_id)


def complete_burial_request(caller: Caller, request_id: int):
    require_capability(caller, "burial_request.complete")
    return requests.complete_burial_request(request_id, caller.user_id)


def confirm_burial(caller: Caller, reservation_id: int, details: Mapping[str, object] | None = None):
    require_capability(caller, "burial.confirm")
    return burials.confirm_from_reservation(reservation_id, caller.user_id, details)


def confirm_burial_request(caller: Caller, request_id: int):
    require_capability(caller, "burial.confirm")
    return requests.confirm_burial_request(request_id, caller.user_id)


def create_burial_record(caller: Caller, plot_id: int, details: Mapping[str, object]):
    require_capability(caller, "burial.create")
    return burials.create_burial_record(plot_id, details, caller.user_id)


def edit_burial_record(caller: Caller, record_id: int, changes: Mapping[str, object]):
    require_capability(caller, "burial.edit")
    return burials.edit_burial_record(record_id, changes, caller.user_id)


def delete_burial_record(caller: Caller, record_id: int):
    require_capability(caller, "burial.delete")
    return burials.delete_burial_record(record_id, caller.user_id)


def create_burial_schedule(caller: Caller, details: Mapping[str, object]):
    require_capability(caller, "burial_schedule.create")
    return schedules.create_burial_schedule(details, caller.user_id)


def update_burial_schedule(caller: Caller, schedule_id: int, changes: Mapping[str, object]):
    require_capability(caller, "burial_schedule.edit")
    return schedules.update_burial_schedule(schedule_id, changes, caller.user_id)


def delete_burial_schedule(caller: Caller, schedule_id: int):
    require_capability(caller, "burial_schedule.delete")
    return schedules.delete_burial_schedule(schedule_id, caller.user_id)


def set_maintenance(caller: Caller, plot_id: int, enabled: bool):
    require_capability(caller, "plot.maintenance")
    return set_plot_maintenance(plot_id, enabled, caller.user_id)


def create_maintenance_request(caller: Caller, payload: Mapping[str, object]):
    require_capability(caller, "maintenance_request.create")
    return requests.create_maintenance_request(caller.user_id, payload)


def review_maintenance_request(
    caller: Caller,
    request_id: int,
    new_status: str,
    assigned_staff_id: int | None = None,
):
    require_capability(caller, "maintenance_request.review")
    return requests.transition_maintenance_request(
        request_id, new_status, caller.user_id, assigned_staff_id=assigned_staff_id
    )


def cancel_maintenance_request(caller: Caller, request_id: int):
    require_capability(caller, "maintenance_request.cancel")
    return requests.cancel_maintenance_request(request_id, caller.user_id)


def _scope(caller: Caller, capability: str, requested: int | None) -> int | None:
    # Without the view_all capability a caller only sees their own rows.
    if has_capability(caller, capability):
        return requested
    return caller.user_id


def list_plots(caller: Caller, status: str | None = None):
    require_capability(caller, "plot.view")
    return listings.list_plots(status)


def plot_detail(caller: Caller, plot_id: int):
    require_capability(caller, "plot.view")
    detail = listings.plot_detail(plot_id)
    if not has_capability(caller, "reservation.view_all"):
        detail["reservations"] = [r for r in detail["reservations"] if r.holder_id == caller.user_id]
    return detail


def list_reservations(caller: Caller, holder_id: int | None = None):
    require_capability(caller, "plot.view")
    return listings.list_reservations(_scope(caller, "reservation.view_all", holder_id))


def list_burial_records(caller: Caller, family_id: int | None = None, limit=None, offset=None):
    require_capability(caller, "plot.view")
    return listings.list_burial_records(_scope(caller, "burial.view_all", family_id), limit, offset)


def list_burial_schedules(caller: Caller, status: str | None = None):
    require_capability(caller, "burial_schedule.view")
    return listings.list_burial_schedules(status)


def list_burial_requests(caller: Caller, holder_id: int | None = None):
    require_capability(caller, "plot.view")
    return listings.list_burial_requests(_scope(caller, "burial_request.view_all", holder_id))


def list_maintenance_requests(caller: Caller, requester_id: int | None = None, status: str | None = None):
    require_capability(caller, "plot.view")
    return listings.list_maintenance_requests(
        _scope(caller, "maintenance_request.view_all", requester_id), status
    )
