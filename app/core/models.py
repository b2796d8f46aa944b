from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum

from flask_login import UserMixin
from sqlalchemy import Enum as SAEnum, ForeignKey, Index, event, inspect, text
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates
from werkzeug.security import generate_password_hash

from app.core.errors import InvalidInput
from app.core.extensions import db

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_column(enum_cls: type[Enum], name: str) -> SAEnum:
    # Persist the lowercase values, not the member names.
    return SAEnum(enum_cls, name=name, values_callable=lambda members: [m.value for m in members])


class UserRole(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    STAFF = "staff"
    VISITOR = "visitor"


class PlotStatus(str, Enum):
    AVAILABLE = "available"
    RESERVED = "reserved"
    OCCUPIED = "occupied"
    MAINTENANCE = "maintenance"


class ReservationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    SUBMITTED = "submitted"
    VALIDATED = "validated"
    APPROVED = "approved"
    REJECTED = "rejected"


class BurialRequestStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class MaintenanceRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class BurialScheduleStatus(str, Enum):
    CONFIRMED = "confirmed"
    COMPLETED = "completed"


DATE_FIELDS = ("birth_date", "death_date", "burial_date")


def check_date_order(birth: date | None, death: date | None, burial: date | None) -> None:
    if birth and death and death < birth:
        raise InvalidInput("death_date cannot be before birth_date")
    if death and burial and burial < death:
        raise InvalidInput("burial_date cannot be before death_date")


ACTIVE_RESERVATION_STATUSES = (ReservationStatus.PENDING, ReservationStatus.APPROVED)
TERMINAL_RESERVATION_STATUSES = (
    ReservationStatus.REJECTED,
    ReservationStatus.CANCELLED,
    ReservationStatus.COMPLETED,
)


class User(UserMixin, db.Model):
    __tablename__ = "user_account"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(db.String(255), unique=True, nullable=False)
    full_name: Mapped[str] = mapped_column(db.String(120), nullable=False)
    password_hash: Mapped[str] = mapped_column(db.String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        _enum_column(UserRole, "user_role"),
        nullable=False,
        default=UserRole.VISITOR,
    )
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class Plot(db.Model):
    __tablename__ = "plot"

    id: Mapped[int] = mapped_column(primary_key=True)
    uid: Mapped[str] = mapped_column(db.String(5), unique=True, nullable=False)
    plot_code: Mapped[str] = mapped_column(db.String(20), unique=True, nullable=False)
    section_name: Mapped[str] = mapped_column(db.String(20), nullable=False, default="")
    row_num: Mapped[int | None] = mapped_column(nullable=True)
    col_num: Mapped[int | None] = mapped_column(nullable=True)
    plot_type: Mapped[str] = mapped_column(db.String(50), nullable=False, default="standard")
    size_sqm: Mapped[Decimal | None] = mapped_column(db.Numeric(8, 2), nullable=True)
    price: Mapped[Decimal | None] = mapped_column(db.Numeric(10, 2), nullable=True)
    geometry_ref: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    # Cached; rewritten by the coordinator in every transaction that changes its inputs.
    status: Mapped[PlotStatus] = mapped_column(
        _enum_column(PlotStatus, "plot_status"),
        nullable=False,
        default=PlotStatus.AVAILABLE,
        index=True,
    )
    under_maintenance: Mapped[bool] = mapped_column(nullable=False, default=False)
    # Occupant projection for search, mirrors the active burial record.
    occupant_name: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    occupant_birth_date: Mapped[date | None] = mapped_column(nullable=True)
    occupant_death_date: Mapped[date | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    reservations = relationship("Reservation", back_populates="plot")
    burial_records = relationship("BurialRecord", back_populates="plot")

    @property
    def location_label(self) -> str:
        return f"{self.section_name} / R{self.row_num} C{self.col_num}"


class Reservation(db.Model):
    __tablename__ = "plot_reservation"
    __table_args__ = (
        Index(
            "ix_plot_reservation_active_plot",
            "plot_id",
            unique=True,
            sqlite_where=text("status IN ('pending', 'approved')"),
            postgresql_where=text("status IN ('pending', 'approved')"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    plot_id: Mapped[int] = mapped_column(ForeignKey("plot.id"), nullable=False, index=True)
    holder_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False, index=True)
    status: Mapped[ReservationStatus] = mapped_column(
        _enum_column(ReservationStatus, "reservation_status"),
        nullable=False,
        default=ReservationStatus.PENDING,
    )
    notes: Mapped[str] = mapped_column(db.Text, nullable=False, default="")
    payment_status: Mapped[PaymentStatus] = mapped_column(
        _enum_column(PaymentStatus, "payment_status"),
        nullable=False,
        default=PaymentStatus.UNPAID,
    )
    payment_receipt_ref: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    payment_notes: Mapped[str] = mapped_column(db.Text, nullable=False, default="")
    payment_uploaded_at: Mapped[datetime | None] = mapped_column(nullable=True)
    payment_validated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    payment_validated_by: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True)
    payment_approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    payment_approved_by: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reviewed_by: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    plot = relationship("Plot", back_populates="reservations")
    holder = relationship("User", foreign_keys=[holder_id])

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_RESERVATION_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RESERVATION_STATUSES


class BurialRecord(db.Model):
    __tablename__ = "burial_record"
    __table_args__ = (
        Index(
            "ix_burial_record_active_plot",
            "plot_id",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    uid: Mapped[str] = mapped_column(db.String(5), unique=True, nullable=False)
    plot_id: Mapped[int] = mapped_column(ForeignKey("plot.id"), nullable=False, index=True)
    reservation_id: Mapped[int | None] = mapped_column(
        ForeignKey("plot_reservation.id"), nullable=True, unique=True
    )
    deceased_name: Mapped[str] = mapped_column(db.String(100), nullable=False)
    birth_date: Mapped[date | None] = mapped_column(nullable=True)
    death_date: Mapped[date | None] = mapped_column(nullable=True)
    burial_date: Mapped[date | None] = mapped_column(nullable=True)
    holder_id: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True, index=True)
    headstone_type: Mapped[str | None] = mapped_column(db.String(50), nullable=True)
    epitaph: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    memorial_text: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    photo_ref: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)
    qr_token: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    plot = relationship("Plot", back_populates="burial_records")
    holder = relationship("User")

    _assigning_dates = False

    @validates("birth_date", "death_date", "burial_date")
    def validate_dates(self, key, value):
        if self._assigning_dates:
            return value
        check_date_order(
            value if key == "birth_date" else self.birth_date,
            value if key == "death_date" else self.death_date,
            value if key == "burial_date" else self.burial_date,
        )
        return value

    def assign_dates(self, **dates: date | None) -> None:
        """Set several dates together, checking only the resulting combination."""
        merged = {key: dates.get(key, getattr(self, key)) for key in DATE_FIELDS}
        check_date_order(merged["birth_date"], merged["death_date"], merged["burial_date"])
        self._assigning_dates = True
        try:
            for key, value in dates.items():
                setattr(self, key, value)
        finally:
            del self._assigning_dates


class BurialRequest(db.Model):
    __tablename__ = "burial_request"

    id: Mapped[int] = mapped_column(primary_key=True)
    plot_id: Mapped[int] = mapped_column(ForeignKey("plot.id"), nullable=False, index=True)
    reservation_id: Mapped[int] = mapped_column(ForeignKey("plot_reservation.id"), nullable=False, index=True)
    holder_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False, index=True)
    deceased_name: Mapped[str] = mapped_column(db.String(100), nullable=False)
    birth_date: Mapped[date | None] = mapped_column(nullable=True)
    death_date: Mapped[date | None] = mapped_column(nullable=True)
    burial_date: Mapped[date | None] = mapped_column(nullable=True)
    special_requirements: Mapped[str] = mapped_column(db.Text, nullable=False, default="")
    status: Mapped[BurialRequestStatus] = mapped_column(
        _enum_column(BurialRequestStatus, "burial_request_status"),
        nullable=False,
        default=BurialRequestStatus.PENDING,
    )
    burial_record_id: Mapped[int | None] = mapped_column(ForeignKey("burial_record.id"), nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    confirmed_by: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    reservation = relationship("Reservation")


class BurialSchedule(db.Model):
    __tablename__ = "burial_schedule"

    id: Mapped[int] = mapped_column(primary_key=True)
    plot_id: Mapped[int] = mapped_column(ForeignKey("plot.id"), nullable=False, index=True)
    burial_record_id: Mapped[int | None] = mapped_column(ForeignKey("burial_record.id"), nullable=True)
    deceased_name: Mapped[str] = mapped_column(db.String(100), nullable=False)
    holder_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False, index=True)
    birth_date: Mapped[date | None] = mapped_column(nullable=True)
    death_date: Mapped[date | None] = mapped_column(nullable=True)
    burial_date: Mapped[date | None] = mapped_column(nullable=True)
    status: Mapped[BurialScheduleStatus] = mapped_column(
        _enum_column(BurialScheduleStatus, "burial_schedule_status"),
        nullable=False,
        default=BurialScheduleStatus.CONFIRMED,
    )
    approved_by: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False)
    special_requirements: Mapped[str] = mapped_column(db.Text, nullable=False, default="")
    memorial_text: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    burial_record = relationship("BurialRecord")


class MaintenanceRequest(db.Model):
    __tablename__ = "maintenance_request"

    id: Mapped[int] = mapped_column(primary_key=True)
    plot_id: Mapped[int | None] = mapped_column(ForeignKey("plot.id"), nullable=True, index=True)
    requester_id: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False, index=True)
    assigned_staff_id: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True)
    description: Mapped[str] = mapped_column(db.Text, nullable=False)
    priority: Mapped[str] = mapped_column(db.String(20), nullable=False, default="medium")
    preferred_date: Mapped[date | None] = mapped_column(nullable=True)
    status: Mapped[MaintenanceRequestStatus] = mapped_column(
        _enum_column(MaintenanceRequestStatus, "maintenance_request_status"),
        nullable=False,
        default=MaintenanceRequestStatus.PENDING,
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)


@event.listens_for(Plot, "after_update")
def plot_after_update(_mapper, _connection, target: Plot) -> None:
    # Status changes are only ever written by the coordinator; trace them.
    state = inspect(target)
    history = state.attrs.status.history
    if history.has_changes():
        previous = history.deleted[0].value if history.deleted else None
        logger.info("plot %s status %s -> %s", target.plot_code, previous, target.status.value)


def seed_demo_data(session) -> None:
    users = [
        User(
            email="admin@cemetery.local",
            full_name="Admin Cementerio",
            password_hash=generate_password_hash("admin123"),
            role=UserRole.ADMIN,
        ),
        User(
            email="staff@cemetery.local",
            full_name="Staff Cementerio",
            password_hash=generate_password_hash("staff123"),
            role=UserRole.STAFF,
        ),
        User(
            email="ana@visitor.local",
            full_name="Ana Visitor",
            password_hash=generate_password_hash("visitor123"),
            role=UserRole.VISITOR,
        ),
        User(
            email="bruno@visitor.local",
            full_name="Bruno Visitor",
            password_hash=generate_password_hash("visitor123"),
            role=UserRole.VISITOR,
        ),
    ]
    session.add_all(users)
    session.flush()

    plots = []
    for section in ("A", "B"):
        for row in range(1, 3):
            for col in range(1, 4):
                code = f"{section}-{row:02d}-{col:02d}"
                plots.append(
                    Plot(
                        uid=f"{section}{row}{col:03d}",
                        plot_code=code,
                        section_name=section,
                        row_num=row,
                        col_num=col,
                        plot_type="lawn" if section == "A" else "double_lawn",
                        size_sqm=Decimal("2.50") if section == "A" else Decimal("5.00"),
                        price=Decimal("45000.00") if section == "A" else Decimal("80000.00"),
                        geometry_ref=f"plots/{code}",
                        status=PlotStatus.AVAILABLE,
                    )
                )
    session.add_all(plots)
    session.commit()
