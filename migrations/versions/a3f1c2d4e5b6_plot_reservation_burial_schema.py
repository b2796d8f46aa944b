"""plot, reservation and burial schema

Revision ID: a3f1c2d4e5b6
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "a3f1c2d4e5b6"
down_revision = None
branch_labels = None
depends_on = None


user_role = sa.Enum("super_admin", "admin", "staff", "visitor", name="user_role")
plot_status = sa.Enum("available", "reserved", "occupied", "maintenance", name="plot_status")
reservation_status = sa.Enum(
    "pending", "approved", "rejected", "cancelled", "completed", name="reservation_status"
)
payment_status = sa.Enum("unpaid", "submitted", "validated", "approved", "rejected", name="payment_status")
burial_request_status = sa.Enum(
    "pending", "confirmed", "rejected", "cancelled", "completed", name="burial_request_status"
)
maintenance_request_status = sa.Enum(
    "pending", "approved", "rejected", "cancelled", "completed", name="maintenance_request_status"
)


def upgrade():
    op.create_table(
        "user_account",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=120), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", user_role, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "plot",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("uid", sa.String(length=5), nullable=False),
        sa.Column("plot_code", sa.String(length=20), nullable=False),
        sa.Column("section_name", sa.String(length=20), nullable=False, server_default=""),
        sa.Column("row_num", sa.Integer(), nullable=True),
        sa.Column("col_num", sa.Integer(), nullable=True),
        sa.Column("plot_type", sa.String(length=50), nullable=False, server_default="standard"),
        sa.Column("size_sqm", sa.Numeric(8, 2), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=True),
        sa.Column("geometry_ref", sa.String(length=255), nullable=True),
        sa.Column("status", plot_status, nullable=False, server_default="available"),
        sa.Column("under_maintenance", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("occupant_name", sa.String(length=100), nullable=True),
        sa.Column("occupant_birth_date", sa.Date(), nullable=True),
        sa.Column("occupant_death_date", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("uid"),
        sa.UniqueConstraint("plot_code"),
    )
    with op.batch_alter_table("plot", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_plot_status"), ["status"], unique=False)

    op.create_table(
        "plot_reservation",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("plot_id", sa.Integer(), nullable=False),
        sa.Column("holder_id", sa.Integer(), nullable=False),
        sa.Column("status", reservation_status, nullable=False, server_default="pending"),
        sa.Column("notes", sa.Text(), nullable=False, server_default=""),
        sa.Column("payment_status", payment_status, nullable=False, server_default="unpaid"),
        sa.Column("payment_receipt_ref", sa.String(length=255), nullable=True),
        sa.Column("payment_notes", sa.Text(), nullable=False, server_default=""),
        sa.Column("payment_uploaded_at", sa.DateTime(), nullable=True),
        sa.Column("payment_validated_at", sa.DateTime(), nullable=True),
        sa.Column("payment_validated_by", sa.Integer(), nullable=True),
        sa.Column("payment_approved_at", sa.DateTime(), nullable=True),
        sa.Column("payment_approved_by", sa.Integer(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(), nullable=True),
        sa.Column("reviewed_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["plot_id"], ["plot.id"]),
        sa.ForeignKeyConstraint(["holder_id"], ["user_account.id"]),
        sa.ForeignKeyConstraint(["payment_validated_by"], ["user_account.id"]),
        sa.ForeignKeyConstraint(["payment_approved_by"], ["user_account.id"]),
        sa.ForeignKeyConstraint(["reviewed_by"], ["user_account.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("plot_reservation", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_plot_reservation_plot_id"), ["plot_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_plot_reservation_holder_id"), ["holder_id"], unique=False)
    op.create_index(
        "ix_plot_reservation_active_plot",
        "plot_reservation",
        ["plot_id"],
        unique=True,
        sqlite_where=sa.text("status IN ('pending', 'approved')"),
        postgresql_where=sa.text("status IN ('pending', 'approved')"),
    )

    op.create_table(
        "burial_record",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("uid", sa.String(length=5), nullable=False),
        sa.Column("plot_id", sa.Integer(), nullable=False),
        sa.Column("reservation_id", sa.Integer(), nullable=True),
        sa.Column("deceased_name", sa.String(length=100), nullable=False),
        sa.Column("birth_date", sa.Date(), nullable=True),
        sa.Column("death_date", sa.Date(), nullable=True),
        sa.Column("burial_date", sa.Date(), nullable=True),
        sa.Column("holder_id", sa.Integer(), nullable=True),
        sa.Column("headstone_type", sa.String(length=50), nullable=True),
        sa.Column("epitaph", sa.Text(), nullable=True),
        sa.Column("memorial_text", sa.Text(), nullable=True),
        sa.Column("photo_ref", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["plot_id"], ["plot.id"]),
        sa.ForeignKeyConstraint(["reservation_id"], ["plot_reservation.id"]),
        sa.ForeignKeyConstraint(["holder_id"], ["user_account.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("uid"),
        sa.UniqueConstraint("reservation_id"),
    )
    with op.batch_alter_table("burial_record", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_burial_record_plot_id"), ["plot_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_burial_record_holder_id"), ["holder_id"], unique=False)
    op.create_index(
        "ix_burial_record_active_plot",
        "burial_record",
        ["plot_id"],
        unique=True,
        sqlite_where=sa.text("is_active = 1"),
        postgresql_where=sa.text("is_active"),
    )

    op.create_table(
        "burial_request",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("plot_id", sa.Integer(), nullable=False),
        sa.Column("reservation_id", sa.Integer(), nullable=False),
        sa.Column("holder_id", sa.Integer(), nullable=False),
        sa.Column("deceased_name", sa.String(length=100), nullable=False),
        sa.Column("birth_date", sa.Date(), nullable=True),
        sa.Column("death_date", sa.Date(), nullable=True),
        sa.Column("burial_date", sa.Date(), nullable=True),
        sa.Column("special_requirements", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", burial_request_status, nullable=False, server_default="pending"),
        sa.Column("burial_record_id", sa.Integer(), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(), nullable=True),
        sa.Column("confirmed_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["plot_id"], ["plot.id"]),
        sa.ForeignKeyConstraint(["reservation_id"], ["plot_reservation.id"]),
        sa.ForeignKeyConstraint(["holder_id"], ["user_account.id"]),
        sa.ForeignKeyConstraint(["burial_record_id"], ["burial_record.id"]),
        sa.ForeignKeyConstraint(["confirmed_by"], ["user_account.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("burial_request", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_burial_request_plot_id"), ["plot_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_burial_request_reservation_id"), ["reservation_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_burial_request_holder_id"), ["holder_id"], unique=False)

    op.create_table(
        "maintenance_request",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("plot_id", sa.Integer(), nullable=True),
        sa.Column("requester_id", sa.Integer(), nullable=False),
        sa.Column("assigned_staff_id", sa.Integer(), nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("priority", sa.String(length=20), nullable=False, server_default="medium"),
        sa.Column("preferred_date", sa.Date(), nullable=True),
        sa.Column("status", maintenance_request_status, nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["plot_id"], ["plot.id"]),
        sa.ForeignKeyConstraint(["requester_id"], ["user_account.id"]),
        sa.ForeignKeyConstraint(["assigned_staff_id"], ["user_account.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("maintenance_request", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_maintenance_request_plot_id"), ["plot_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_maintenance_request_requester_id"), ["requester_id"], unique=False)


def downgrade():
    op.drop_table("maintenance_request")
    op.drop_table("burial_request")
    op.drop_index("ix_burial_record_active_plot", table_name="burial_record")
    op.drop_table("burial_record")
    op.drop_index("ix_plot_reservation_active_plot", table_name="plot_reservation")
    op.drop_table("plot_reservation")
    op.drop_table("plot")
    op.drop_table("user_account")

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for enum in (
            maintenance_request_status,
            burial_request_status,
            payment_status,
            reservation_status,
            plot_status,
            user_role,
        ):
            enum.drop(bind, checkfirst=True)
