"""Reseller onboarding: application status and business details on users

Revision ID: 20261017_reseller_onboarding
Revises: 20261017_initial
Create Date: 2026-10-17

Existing reseller accounts were created by administrators, so they are
backfilled as approved.
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261017_reseller_onboarding"
down_revision = "20261017_initial"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("users", schema=None) as batch_op:
        batch_op.add_column(sa.Column("reseller_status", sa.String(length=16), nullable=True))
        batch_op.add_column(sa.Column("business_name", sa.String(length=255), nullable=True))
        batch_op.add_column(sa.Column("gst_number", sa.String(length=32), nullable=True))
        batch_op.create_index("ix_users_reseller_status", ["reseller_status"], unique=False)

    op.execute("UPDATE users SET reseller_status = 'approved' WHERE role = 'reseller'")


def downgrade():
    with op.batch_alter_table("users", schema=None) as batch_op:
        batch_op.drop_index("ix_users_reseller_status")
        batch_op.drop_column("gst_number")
        batch_op.drop_column("business_name")
        batch_op.drop_column("reseller_status")
