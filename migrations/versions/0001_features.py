"""features and feature permissions

Revision ID: 0001_features
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_features"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "features",
        sa.Column("uid", sa.String(length=100), primary_key=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("group_name", sa.String(length=100), nullable=True),
        sa.Column("strategy_name", sa.String(length=255), nullable=True),
        sa.Column("strategy_params", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_features_group_name", "features", ["group_name"])

    op.create_table(
        "feature_permissions",
        sa.Column(
            "feature_uid",
            sa.String(length=100),
            sa.ForeignKey("features.uid", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("role_name", sa.String(length=100), primary_key=True),
    )


def downgrade() -> None:
    op.drop_table("feature_permissions")
    op.drop_index("ix_features_group_name", table_name="features")
    op.drop_table("features")
