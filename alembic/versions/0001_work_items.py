"""Work items table."""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_work_items"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the work_items table and its status enum."""
    bind = op.get_bind()

    workstatus = postgresql.ENUM("pending", "done", "failed", name="workstatus", create_type=False)
    workstatus.create(bind, checkfirst=True)

    op.create_table(
        "work_items",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("payload", postgresql.JSONB(), nullable=True),
        sa.Column("result", postgresql.JSONB(), nullable=True),
        sa.Column("status", workstatus, nullable=False, server_default="pending"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("lease_owner", sa.String(length=255), nullable=True),
        sa.Column("lease_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_work_items_claimable", "work_items", ["status", "lease_owner", "id"])
    op.create_index("idx_work_items_lease_at", "work_items", ["lease_at"])


def downgrade() -> None:
    """Drop the work_items table and its enum."""
    op.drop_index("idx_work_items_lease_at", table_name="work_items")
    op.drop_index("idx_work_items_claimable", table_name="work_items")
    op.drop_table("work_items")

    bind = op.get_bind()
    sa.Enum(name="workstatus").drop(bind, checkfirst=True)
