from __future__ import annotations

from flask import g, jsonify, request
from flask_login import login_required

from app.cemetery import cemetery_bp, workflow
from app.core.errors import ServiceError
from app.core.models import BurialRecord, BurialRequest, BurialSchedule, MaintenanceRequest, Plot, Reservation
from app.core.permissions import require_caller
from app.core.utils import iso, money, parse_bool, parse_optional_id


@cemetery_bp.errorhandler(ServiceError)
def service_error(exc: ServiceError):
    return jsonify({"error": exc.message}), exc.status_code


def _payload() -> dict:
    return request.get_json(silent=True) or request.form.to_dict()


def plot_json(plot: Plot) -> dict:
    return {
        "id": plot.id,
        "uid": plot.uid,
        "plot_code": plot.plot_code,
        "section_name": plot.section_name,
        "row_num": plot.row_num,
        "col_num": plot.col_num,
        "location": plot.location_label,
        "plot_type": plot.plot_type,
        "size_sqm": money(plot.size_sqm),
        "price": money(plot.price),
        "geometry_ref": plot.geometry_ref,
        "status": plot.status.value,
        "under_maintenance": plot.under_maintenance,
        "occupant_name": plot.occupant_name,
        "occupant_birth_date": iso(plot.occupant_birth_date),
        "occupant_death_date": iso(plot.occupant_death_date),
    }


def reservation_json(reservation: Reservation) -> dict:
    return {
        "id": reservation.id,
        "plot_id": reservation.plot_id,
        "holder_id": reservation.holder_id,
        "status": reservation.status.value,
        "notes": reservation.notes,
        "payment_status": reservation.payment_status.value,
        "payment_receipt_ref": reservation.payment_receipt_ref,
        "payment_notes": reservation.payment_notes,
        "payment_uploaded_at": iso(reservation.payment_uploaded_at),
        "payment_validated_at": iso(reservation.payment_validated_at),
        "payment_approved_at": iso(reservation.payment_approved_at),
        "reviewed_at": iso(reservation.reviewed_at),
        "created_at": iso(reservation.created_at),
    }


def burial_json(record: BurialRecord) -> dict:
    return {
        "id": record.id,
        "uid": record.uid,
        "plot_id": record.plot_id,
        "reservation_id": record.reservation_id,
        "deceased_name": record.deceased_name,
        "birth_date": iso(record.birth_date),
        "death_date": iso(record.death_date),
        "burial_date": iso(record.burial_date),
        "holder_id": record.holder_id,
        "headstone_type": record.headstone_type,
        "epitaph": record.epitaph,
        "memorial_text": record.memorial_text,
        "photo_ref": record.photo_ref,
        "is_active": record.is_active,
        "qr_token": record.qr_token,
    }


def burial_request_json(item: BurialRequest) -> dict:
    return {
        "id": item.id,
        "plot_id": item.plot_id,
        "reservation_id": item.reservation_id,
        "holder_id": item.holder_id,
        "deceased_name": item.deceased_name,
        "birth_date": iso(item.birth_date),
        "death_date": iso(item.death_date),
        "burial_date": iso(item.burial_date),
        "special_requirements": item.special_requirements,
        "status": item.status.value,
        "burial_record_id": item.burial_record_id,
        "confirmed_at": iso(item.confirmed_at),
    }


def burial_schedule_json(schedule: BurialSchedule) -> dict:
    record = schedule.burial_record
    return {
        "id": schedule.id,
        "plot_id": schedule.plot_id,
        "burial_record_id": schedule.burial_record_id,
        "deceased_name": schedule.deceased_name,
        "holder_id": schedule.holder_id,
        "birth_date": iso(schedule.birth_date),
        "death_date": iso(schedule.death_date),
        "burial_date": iso(schedule.burial_date),
        "status": schedule.status.value,
        "approved_by": schedule.approved_by,
        "special_requirements": schedule.special_requirements,
        "memorial_text": schedule.memorial_text,
        "created_at": iso(schedule.created_at),
        "burial": burial_json(record) if record is not None else None,
    }


def maintenance_request_json(item: MaintenanceRequest) -> dict:
    return {
        "id": item.id,
        "plot_id": item.plot_id,
        "requester_id": item.requester_id,
        "assigned_staff_id": item.assigned_staff_id,
        "description": item.description,
        "priority": item.priority,
        "preferred_date": iso(item.preferred_date),
        "status": item.status.value,
        "completed_at": iso(item.completed_at),
    }


@cemetery_bp.get("/plots")
@login_required
@require_caller
def plots_list():
    plots = workflow.list_plots(g.caller, request.args.get("status"))
    return jsonify([plot_json(plot) for plot in plots])


@cemetery_bp.get("/plots/<int:plot_id>")
@login_required
@require_caller
def plot_detail(plot_id: int):
    detail = workflow.plot_detail(g.caller, plot_id)
    burial = detail["active_burial"]
    return jsonify(
        {
            "plot": plot_json(detail["plot"]),
            "active_burial": burial_json(burial) if burial else None,
            "reservations": [reservation_json(item) for item in detail["reservations"]],
        }
    )


@cemetery_bp.post("/plots/<int:plot_id>/reservations")
@login_required
@require_caller
def plot_reserve(plot_id: int):
    payload = _payload()
    holder_id = payload.get("holder_id") or None
    reservation = workflow.reserve(g.caller, plot_id, payload.get("notes"), holder_id)
    return jsonify(reservation_json(reservation)), 201


@cemetery_bp.post("/plots/<int:plot_id>/maintenance")
@login_required
@require_caller
def plot_maintenance(plot_id: int):
    plot = workflow.set_maintenance(g.caller, plot_id, parse_bool(_payload().get("enabled", True)))
    return jsonify(plot_json(plot))


@cemetery_bp.post("/plots/<int:plot_id>/burials")
@login_required
@require_caller
def plot_burial_create(plot_id: int):
    record = workflow.create_burial_record(g.caller, plot_id, _payload())
    return jsonify(burial_json(record)), 201


@cemetery_bp.get("/reservations")
@login_required
@require_caller
def reservations_list():
    items = workflow.list_reservations(g.caller, request.args.get("holder_id", type=int))
    return jsonify([reservation_json(item) for item in items])


@cemetery_bp.post("/reservations/<int:reservation_id>/payment")
@login_required
@require_caller
def reservation_payment_upload(reservation_id: int):
    reservation, replaced = workflow.upload_payment_proof(
        g.caller, reservation_id, _payload().get("asset_ref")
    )
    data = reservation_json(reservation)
    data["replaced_asset_ref"] = replaced
    return jsonify(data)


@cemetery_bp.post("/reservations/<int:reservation_id>/payment/validate")
@login_required
@require_caller
def reservation_payment_validate(reservation_id: int):
    return jsonify(reservation_json(workflow.validate_payment(g.caller, reservation_id)))


@cemetery_bp.post("/reservations/<int:reservation_id>/payment/approve")
@login_required
@require_caller
def reservation_payment_approve(reservation_id: int):
    return jsonify(reservation_json(workflow.approve_payment(g.caller, reservation_id)))


@cemetery_bp.post("/reservations/<int:reservation_id>/payment/reject")
@login_required
@require_caller
def reservation_payment_reject(reservation_id: int):
    reservation = workflow.reject_payment(g.caller, reservation_id, _payload().get("notes"))
    return jsonify(reservation_json(reservation))


@cemetery_bp.post("/reservations/<int:reservation_id>/approve")
@login_required
@require_caller
def reservation_approve(reservation_id: int):
    reservation = workflow.approve_reservation(g.caller, reservation_id, _payload().get("notes"))
    return jsonify(reservation_json(reservation))


@cemetery_bp.post("/reservations/<int:reservation_id>/reject")
@login_required
@require_caller
def reservation_reject(reservation_id: int):
    reservation = workflow.reject_reservation(g.caller, reservation_id, _payload().get("notes"))
    return jsonify(reservation_json(reservation))


@cemetery_bp.post("/reservations/<int:reservation_id>/cancel")
@login_required
@require_caller
def reservation_cancel(reservation_id: int):
    return jsonify(reservation_json(workflow.cancel_reservation(g.caller, reservation_id)))


@cemetery_bp.post("/reservations/<int:reservation_id>/confirm-burial")
@login_required
@require_caller
def reservation_confirm_burial(reservation_id: int):
    record = workflow.confirm_burial(g.caller, reservation_id, _payload() or None)
    return jsonify(burial_json(record)), 201


@cemetery_bp.get("/burials")
@login_required
@require_caller
def burials_list():
    records = workflow.list_burial_records(
        g.caller,
        request.args.get("family_id", type=int),
        request.args.get("limit"),
        request.args.get("offset"),
    )
    return jsonify([burial_json(record) for record in records])


@cemetery_bp.patch("/burials/<int:record_id>")
@login_required
@require_caller
def burial_edit(record_id: int):
    return jsonify(burial_json(workflow.edit_burial_record(g.caller, record_id, _payload())))


@cemetery_bp.delete("/burials/<int:record_id>")
@login_required
@require_caller
def burial_delete(record_id: int):
    workflow.delete_burial_record(g.caller, record_id)
    return jsonify({"success": True})


@cemetery_bp.get("/burial-schedules")
@login_required
@require_caller
def burial_schedules_list():
    items = workflow.list_burial_schedules(g.caller, request.args.get("status"))
    return jsonify([burial_schedule_json(item) for item in items])


@cemetery_bp.post("/burial-schedules")
@login_required
@require_caller
def burial_schedule_create():
    schedule = workflow.create_burial_schedule(g.caller, _payload())
    return jsonify(burial_schedule_json(schedule)), 201


@cemetery_bp.patch("/burial-schedules/<int:schedule_id>")
@login_required
@require_caller
def burial_schedule_update(schedule_id: int):
    return jsonify(burial_schedule_json(workflow.update_burial_schedule(g.caller, schedule_id, _payload())))


@cemetery_bp.delete("/burial-schedules/<int:schedule_id>")
@login_required
@require_caller
def burial_schedule_delete(schedule_id: int):
    deleted = workflow.delete_burial_schedule(g.caller, schedule_id)
    return jsonify({"id": deleted, "success": True})


@cemetery_bp.get("/burial-requests")
@login_required
@require_caller
def burial_requests_list():
    items = workflow.list_burial_requests(g.caller, request.args.get("holder_id", type=int))
    return jsonify([burial_request_json(item) for item in items])


@cemetery_bp.post("/burial-requests")
@login_required
@require_caller
def burial_request_submit():
    payload = _payload()
    reservation_id = payload.get("reservation_id")
    item = workflow.submit_burial_request(
        g.caller, payload, parse_optional_id(reservation_id, "reservation_id")
    )
    return jsonify(burial_request_json(item)), 201


@cemetery_bp.post("/burial-requests/<int:request_id>/cancel")
@login_required
@require_caller
def burial_request_cancel(request_id: int):
    return jsonify(burial_request_json(workflow.cancel_burial_request(g.caller, request_id)))


@cemetery_bp.post("/burial-requests/<int:request_id>/reject")
@login_required
@require_caller
def burial_request_reject(request_id: int):
    return jsonify(burial_request_json(workflow.reject_burial_request(g.caller, request_id)))


@cemetery_bp.post("/burial-requests/<int:request_id>/confirm")
@login_required
@require_caller
def burial_request_confirm(request_id: int):
    record = workflow.confirm_burial_request(g.caller, request_id)
    return jsonify(burial_json(record)), 201


@cemetery_bp.post("/burial-requests/<int:request_id>/complete")
@login_required
@require_caller
def burial_request_complete(request_id: int):
    return jsonify(burial_request_json(workflow.complete_burial_request(g.caller, request_id)))


@cemetery_bp.get("/maintenance-requests")
@login_required
@require_caller
def maintenance_requests_list():
    items = workflow.list_maintenance_requests(
        g.caller,
        request.args.get("requester_id", type=int),
        request.args.get("status"),
    )
    return jsonify([maintenance_request_json(item) for item in items])


@cemetery_bp.post("/maintenance-requests")
@login_required
@require_caller
def maintenance_request_create():
    item = workflow.create_maintenance_request(g.caller, _payload())
    return jsonify(maintenance_request_json(item)), 201


@cemetery_bp.post("/maintenance-requests/<int:request_id>/status")
@login_required
@require_caller
def maintenance_request_status(request_id: int):
    payload = _payload()
    staff_id = payload.get("assigned_staff_id")
    item = workflow.review_maintenance_request(
        g.caller,
        request_id,
        payload.get("status", ""),
        parse_optional_id(staff_id, "assigned_staff_id"),
    )
    return jsonify(maintenance_request_json(item))


@cemetery_bp.post("/maintenance-requests/<int:request_id>/cancel")
@login_required
@require_caller
def maintenance_request_cancel(request_id: int):
    return jsonify(maintenance_request_json(workflow.cancel_maintenance_request(g.caller, request_id)))
