"""Add super_packages, super_package_history and quotes tables.

Revision ID: 001_super_packages
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa


revision = "001_super_packages"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            onupdate=sa.func.now(),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "super_packages",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        # Identity
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("destination", sa.String(200), server_default=""),
        sa.Column("resort", sa.String(200), server_default=""),
        sa.Column("currency", sa.String(3), server_default="EUR"),
        # Lifecycle
        sa.Column("status", sa.String(20), server_default="active"),
        sa.Column("version", sa.Integer, server_default="1", nullable=False),
        # Pricing structure
        sa.Column("group_size_tiers_json", sa.JSON, server_default="[]"),
        sa.Column("duration_options_json", sa.JSON, server_default="[]"),
        sa.Column("pricing_matrix_json", sa.JSON, server_default="[]"),
        # Sales content
        sa.Column("inclusions_json", sa.JSON, server_default="[]"),
        sa.Column("accommodation_examples_json", sa.JSON, server_default="[]"),
        sa.Column("sales_notes", sa.Text, server_default=""),
        # Audit
        sa.Column("created_by", sa.String(100), nullable=True),
        sa.Column("last_modified_by", sa.String(100), nullable=True),
        # Import tracking
        sa.Column("import_source", sa.String(20), server_default="manual"),
        sa.Column("original_filename", sa.String(255), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_super_packages_status", "super_packages", ["status"])
    op.create_index("ix_super_packages_destination", "super_packages", ["destination"])

    # No FK to super_packages: history outlives a hard delete
    op.create_table(
        "super_package_history",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("package_id", sa.BigInteger, nullable=False),
        sa.Column("version", sa.Integer, nullable=False),
        sa.Column("snapshot_json", sa.JSON, nullable=False),
        sa.Column("modified_by", sa.String(100), nullable=True),
        sa.Column("modified_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("change_description", sa.Text, nullable=True),
        sa.Column("changed_fields_json", sa.JSON, server_default="[]"),
        sa.UniqueConstraint("package_id", "version", name="uq_super_package_history_version"),
    )
    op.create_index("ix_super_package_history_package_id", "super_package_history", ["package_id"])

    op.create_table(
        "quotes",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("destination", sa.String(200), server_default=""),
        sa.Column("number_of_people", sa.Integer, nullable=False),
        sa.Column("number_of_nights", sa.Integer, nullable=False),
        sa.Column("arrival_date", sa.Date, nullable=False),
        sa.Column("currency", sa.String(3), server_default="EUR"),
        sa.Column("total_price", sa.Numeric(12, 2), server_default="0"),
        # Denormalized package snapshot (live or detached)
        sa.Column("linked_package_id", sa.BigInteger, nullable=True),
        sa.Column("linked_package_json", sa.JSON, nullable=True),
        sa.Column("selected_events_json", sa.JSON, server_default="[]"),
        sa.Column("price_history_json", sa.JSON, server_default="[]"),
        *_timestamps(),
    )
    op.create_index("ix_quotes_linked_package_id", "quotes", ["linked_package_id"])


def downgrade() -> None:
    op.drop_index("ix_quotes_linked_package_id", table_name="quotes")
    op.drop_table("quotes")
    op.drop_index("ix_super_package_history_package_id", table_name="super_package_history")
    op.drop_table("super_package_history")
    op.drop_index("ix_super_packages_destination", table_name="super_packages")
    op.drop_index("ix_super_packages_status", table_name="super_packages")
    op.drop_table("super_packages")
