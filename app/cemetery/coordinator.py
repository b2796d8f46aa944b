"""Plot status coordinator.

Every operation that changes a plot's reservations, burial records or
maintenance flag runs inside :func:`locked_plots`. The block holds an
in-process mutex per plot (so threads of one worker queue up in order) and
the plot row lock (``SELECT ... FOR UPDATE``) for the duration of a single
transaction, and commits or rolls back before the locks are released.
"""
from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from flask import current_app
from sqlalchemy import func, select, text
from sqlalchemy.exc import IntegrityError, OperationalError

from app.core.errors import Conflict, NotFound, PlotBusy
from app.core.extensions import db
from app.core.models import (
    ACTIVE_RESERVATION_STATUSES,
    BurialRecord,
    Plot,
    PlotStatus,
    Reservation,
)

logger = logging.getLogger(__name__)

_registry_guard = threading.Lock()
_plot_mutexes: dict[int, threading.Lock] = {}


def _plot_mutex(plot_id: int) -> threading.Lock:
    with _registry_guard:
        mutex = _plot_mutexes.get(plot_id)
        if mutex is None:
            mutex = _plot_mutexes[plot_id] = threading.Lock()
        return mutex


def _set_row_lock_timeout(timeout: float) -> None:
    bind = db.session.get_bind()
    if bind.dialect.name == "postgresql":
        db.session.execute(text(f"SET LOCAL lock_timeout = {int(timeout * 1000)}"))


def _is_lock_timeout(exc: OperationalError) -> bool:
    # 55P03 = lock_not_available
    orig = exc.orig
    return (getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)) == "55P03"


def derive_status(*, under_maintenance: bool, has_active_burial: bool, has_active_reservation: bool) -> PlotStatus:
    if under_maintenance:
        return PlotStatus.MAINTENANCE
    if has_active_burial:
        return PlotStatus.OCCUPIED
    if has_active_reservation:
        return PlotStatus.RESERVED
    return PlotStatus.AVAILABLE


def active_burial_for_plot(plot_id: int) -> BurialRecord | None:
    return db.session.execute(
        select(BurialRecord)
        .where(BurialRecord.plot_id == plot_id, BurialRecord.is_active.is_(True))
        .order_by(BurialRecord.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def count_active_reservations(plot_id: int) -> int:
    query = select(func.count(Reservation.id)).where(
        Reservation.plot_id == plot_id,
        Reservation.status.in_(ACTIVE_RESERVATION_STATUSES),
    )
    return db.session.execute(query).scalar_one()


def refresh_plot(plot: Plot) -> PlotStatus:
    """Recompute the cached status and occupant projection from the facts."""
    db.session.flush()
    burial = active_burial_for_plot(plot.id)
    status = derive_status(
        under_maintenance=plot.under_maintenance,
        has_active_burial=burial is not None,
        has_active_reservation=count_active_reservations(plot.id) > 0,
    )
    if plot.status != status:
        plot.status = status
    plot.occupant_name = burial.deceased_name if burial else None
    plot.occupant_birth_date = burial.birth_date if burial else None
    plot.occupant_death_date = burial.death_date if burial else None
    db.session.add(plot)
    return status


def ensure_plot_free_of(plot: Plot, *states: PlotStatus) -> None:
    for state in states:
        if plot.status == state:
            raise Conflict(_STATE_MESSAGES[state])


_STATE_MESSAGES = {
    PlotStatus.OCCUPIED: "Plot is already occupied",
    PlotStatus.RESERVED: "Plot is already reserved",
    PlotStatus.MAINTENANCE: "Plot is under maintenance",
}


@contextmanager
def locked_plots(*plot_ids: int) -> Iterator[dict[int, Plot]]:
    """Lock the given plots in ascending id order for one transaction.

    Yields ``{plot_id: Plot}`` with freshly loaded rows. The transaction is
    committed when the block exits normally and rolled back otherwise; locks
    are released only after that.
    """
    ordered = sorted({int(plot_id) for plot_id in plot_ids})
    if not ordered:
        raise NotFound("Plot not found")
    timeout = float(current_app.config.get("PLOT_LOCK_TIMEOUT", 5))

    held: list[threading.Lock] = []
    try:
        for plot_id in ordered:
            mutex = _plot_mutex(plot_id)
            if not mutex.acquire(timeout=timeout):
                logger.warning("timed out after %.1fs waiting for plot lock", timeout)
                raise PlotBusy("Plot is busy, try again shortly")
            held.append(mutex)

        try:
            # Anything read before the lock may be stale now.
            db.session.expire_all()
            _set_row_lock_timeout(timeout)
            plots: dict[int, Plot] = {}
            for plot_id in ordered:
                plot = db.session.execute(
                    select(Plot)
                    .where(Plot.id == plot_id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                ).scalar_one_or_none()
                if plot is None:
                    raise NotFound("Plot not found")
                plots[plot_id] = plot
            yield plots
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            raise Conflict("Plot changed concurrently, try again") from exc
        except OperationalError as exc:
            db.session.rollback()
            if _is_lock_timeout(exc):
                raise PlotBusy("Plot is busy, try again shortly") from exc
            raise
        except BaseException:
            db.session.rollback()
            raise
    finally:
        for mutex in reversed(held):
            mutex.release()


@contextmanager
def locked_plot(plot_id: int) -> Iterator[Plot]:
    with locked_plots(plot_id) as plots:
        yield plots[int(plot_id)]


def set_plot_maintenance(plot_id: int, enabled: bool, actor_id: int | None = None) -> Plot:
    with locked_plot(plot_id) as plot:
        if enabled and not plot.under_maintenance:
            if active_burial_for_plot(plot.id) is not None:
                raise Conflict("Plot is already occupied")
            if count_active_reservations(plot.id):
                raise Conflict("Plot is already reserved")
        plot.under_maintenance = bool(enabled)
        refresh_plot(plot)
    logger.info("plot %s maintenance %s by user %s", plot_id, "on" if enabled else "off", actor_id)
    return plot
