"""Track hosts that have been ingested"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "003"
down_revision = "002"
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        "crawled_sites",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text("uuid_generate_v4()")),
        sa.Column("hostname", sa.Text(), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("last_crawled_at", sa.DateTime(timezone=True), nullable=False),
    )

def downgrade():
    op.drop_table("crawled_sites")
