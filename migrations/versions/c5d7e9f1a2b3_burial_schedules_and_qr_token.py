"""burial schedules and grave qr token

Revision ID: c5d7e9f1a2b3
Revises: a3f1c2d4e5b6
Create Date: 2026-10-19 16:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "c5d7e9f1a2b3"
down_revision = "a3f1c2d4e5b6"
branch_labels = None
depends_on = None


burial_schedule_status = sa.Enum("confirmed", "completed", name="burial_schedule_status")


def upgrade():
    with op.batch_alter_table("burial_record", schema=None) as batch_op:
        batch_op.add_column(sa.Column("qr_token", sa.Text(), nullable=True))

    op.create_table(
        "burial_schedule",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("plot_id", sa.Integer(), nullable=False),
        sa.Column("burial_record_id", sa.Integer(), nullable=True),
        sa.Column("deceased_name", sa.String(length=100), nullable=False),
        sa.Column("holder_id", sa.Integer(), nullable=False),
        sa.Column("birth_date", sa.Date(), nullable=True),
        sa.Column("death_date", sa.Date(), nullable=True),
        sa.Column("burial_date", sa.Date(), nullable=True),
        sa.Column("status", burial_schedule_status, nullable=False, server_default="confirmed"),
        sa.Column("approved_by", sa.Integer(), nullable=False),
        sa.Column("special_requirements", sa.Text(), nullable=False, server_default=""),
        sa.Column("memorial_text", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["plot_id"], ["plot.id"]),
        sa.ForeignKeyConstraint(["burial_record_id"], ["burial_record.id"]),
        sa.ForeignKeyConstraint(["holder_id"], ["user_account.id"]),
        sa.ForeignKeyConstraint(["approved_by"], ["user_account.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("burial_schedule", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_burial_schedule_plot_id"), ["plot_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_burial_schedule_holder_id"), ["holder_id"], unique=False)


def downgrade():
    op.drop_table("burial_schedule")
    with op.batch_alter_table("burial_record", schema=None) as batch_op:
        batch_op.drop_column("qr_token")

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        burial_schedule_status.drop(bind, checkfirst=True)
