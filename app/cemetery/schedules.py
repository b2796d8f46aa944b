"""Staff burial schedules.

A schedule is staff's booking of a burial on a plot. Creating one writes the
plot's active burial record in the same transaction, and later edits to the
schedule are mirrored onto that record, plot moves included.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping

from sqlalchemy import select

from app.cemetery.burials import (
    apply_record_edit,
    insert_burial_record,
    locked_record,
    record_fields,
)
from app.cemetery.coordinator import ensure_plot_free_of, locked_plot, locked_plots, refresh_plot
from app.core.errors import Conflict, InvalidInput, NotFound
from app.core.extensions import db
from app.core.models import (
    DATE_FIELDS,
    BurialSchedule,
    BurialScheduleStatus,
    PlotStatus,
    User,
    check_date_order,
)
from app.core.utils import clean_text, parse_id, parse_optional_id

logger = logging.getLogger(__name__)

DEFAULT_HEADSTONE = "flat"
# Copied onto the burial record on every edit.
_MIRRORED_FIELDS = ("deceased_name", "holder_id", "memorial_text", *DATE_FIELDS)
_EDITABLE_FIELDS = (*_MIRRORED_FIELDS, "plot_id", "status", "approved_by", "special_requirements")


def schedule_by_id(schedule_id: int) -> BurialSchedule:
    schedule = db.session.get(BurialSchedule, schedule_id)
    if not schedule:
        raise NotFound("Schedule not found")
    return schedule


def _locked_schedule(schedule_id: int) -> BurialSchedule:
    schedule = db.session.execute(
        select(BurialSchedule)
        .where(BurialSchedule.id == schedule_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if schedule is None:
        raise NotFound("Schedule not found")
    return schedule


def _staff_member(value: object) -> int:
    staff_id = parse_id(value, "approved_by")
    if not db.session.get(User, staff_id):
        raise NotFound("Staff member not found")
    return staff_id


def _schedule_status(value: object) -> BurialScheduleStatus:
    try:
        return BurialScheduleStatus(clean_text(value).lower())
    except ValueError as exc:
        raise InvalidInput("Invalid schedule status") from exc


def create_burial_schedule(details: Mapping[str, object], actor_id: int) -> BurialSchedule:
    """Schedule a burial and record the plot's occupant in one transaction."""
    plot_id = parse_optional_id(details.get("plot_id"), "plot_id")
    if plot_id is None:
        raise InvalidInput("plot_id is required")
    fields = record_fields(details)
    if "holder_id" not in fields:
        raise InvalidInput("holder_id is required")
    fields["headstone_type"] = fields.get("headstone_type") or DEFAULT_HEADSTONE
    approved_by = _staff_member(details.get("approved_by") or actor_id)

    with locked_plot(plot_id) as plot:
        ensure_plot_free_of(plot, PlotStatus.OCCUPIED, PlotStatus.MAINTENANCE)
        record = insert_burial_record(plot, fields)
        schedule = BurialSchedule(
            plot_id=plot.id,
            burial_record_id=record.id,
            deceased_name=record.deceased_name,
            holder_id=record.holder_id,
            birth_date=record.birth_date,
            death_date=record.death_date,
            burial_date=record.burial_date,
            status=BurialScheduleStatus.CONFIRMED,
            approved_by=approved_by,
            special_requirements=clean_text(details.get("special_requirements")),
            memorial_text=record.memorial_text,
        )
        db.session.add(schedule)
        refresh_plot(plot)
    logger.info("burial schedule %s created on plot %s by user %s", schedule.id, plot_id, actor_id)
    return schedule


def update_burial_schedule(schedule_id: int, changes: Mapping[str, object], actor_id: int) -> BurialSchedule:
    if not any(key in changes for key in _EDITABLE_FIELDS):
        raise InvalidInput("No fields to update")
    schedule = schedule_by_id(schedule_id)
    record_id = schedule.burial_record_id
    current_plot_id = schedule.burial_record.plot_id if record_id is not None else schedule.plot_id
    new_plot_id = parse_optional_id(changes.get("plot_id"), "plot_id")
    if new_plot_id is None:
        new_plot_id = current_plot_id

    mirrored = record_fields({key: changes[key] for key in _MIRRORED_FIELDS if key in changes}, partial=True)
    status = _schedule_status(changes["status"]) if "status" in changes else None
    approved_by = _staff_member(changes["approved_by"]) if changes.get("approved_by") not in (None, "") else None

    with locked_plots(schedule.plot_id, current_plot_id, new_plot_id) as plots:
        schedule = _locked_schedule(schedule_id)
        if schedule.burial_record_id != record_id:
            raise Conflict("Schedule changed concurrently, try again")
        dates = {key: mirrored.get(key, getattr(schedule, key)) for key in DATE_FIELDS}
        check_date_order(dates["birth_date"], dates["death_date"], dates["burial_date"])

        if record_id is not None:
            record = locked_record(record_id)
            if record.plot_id != current_plot_id:
                raise Conflict("Burial record changed concurrently, try again")
            apply_record_edit(record, mirrored, plots, new_plot_id)

        for key, value in mirrored.items():
            setattr(schedule, key, value)
        schedule.plot_id = new_plot_id
        if status is not None:
            schedule.status = status
        if approved_by is not None:
            schedule.approved_by = approved_by
        if "special_requirements" in changes:
            schedule.special_requirements = clean_text(changes.get("special_requirements"))
    logger.info("burial schedule %s updated by user %s", schedule_id, actor_id)
    return schedule


def delete_burial_schedule(schedule_id: int, actor_id: int) -> int:
    """Drop the schedule only; its burial record stays on the plot."""
    schedule = schedule_by_id(schedule_id)
    db.session.delete(schedule)
    db.session.commit()
    logger.info("burial schedule %s deleted by user %s", schedule_id, actor_id)
    return schedule_id
