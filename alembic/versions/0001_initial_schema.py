"""Initial PeerLab Gateway schema."""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create assignment and lease tables with their exclusivity constraints."""
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    op.create_table(
        "user_asn_mappings",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("user_hash", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=True),
        sa.Column("asn", sa.BigInteger(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.UniqueConstraint("user_hash", name="uq_user_asn_mappings_user_hash"),
        sa.UniqueConstraint("asn", name="uq_user_asn_mappings_asn"),
    )
    op.create_index("idx_user_asn_mappings_user_id", "user_asn_mappings", ["user_id"])
    op.create_index("idx_user_asn_mappings_created", "user_asn_mappings", ["created_at"])

    op.create_table(
        "prefix_leases",
        sa.Column("lease_id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_hash", sa.String(length=64), nullable=False),
        sa.Column("prefix", postgresql.CIDR(), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    )
    op.create_index("idx_prefix_leases_user_hash", "prefix_leases", ["user_hash", "end_time"])
    op.create_index("idx_prefix_leases_end_time", "prefix_leases", ["end_time"])
    op.create_index("idx_prefix_leases_active", "prefix_leases", ["prefix", "end_time"])

    op.execute(
        "ALTER TABLE prefix_leases ADD CONSTRAINT ex_prefix_leases_active_prefix "
        "EXCLUDE USING gist (prefix inet_ops WITH =, tstzrange(start_time, end_time) WITH &&)"
    )


def downgrade() -> None:
    """Drop assignment and lease tables."""
    op.execute("ALTER TABLE prefix_leases DROP CONSTRAINT IF EXISTS ex_prefix_leases_active_prefix")
    op.drop_index("idx_prefix_leases_active", table_name="prefix_leases")
    op.drop_index("idx_prefix_leases_end_time", table_name="prefix_leases")
    op.drop_index("idx_prefix_leases_user_hash", table_name="prefix_leases")
    op.drop_table("prefix_leases")

    op.drop_index("idx_user_asn_mappings_created", table_name="user_asn_mappings")
    op.drop_index("idx_user_asn_mappings_user_id", table_name="user_asn_mappings")
    op.drop_table("user_asn_mappings")
