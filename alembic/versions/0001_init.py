"""Migração inicial: cache local do carrinho anônimo."""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.create_table(
        "local_carts",
        sa.Column("cart_key", sa.String(128), primary_key=True),
        sa.Column("items", sa.JSON(), nullable=False),
        sa.Column("size_bytes", sa.Integer, nullable=False, server_default="0"),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=False)),
    )

def downgrade() -> None:
    op.drop_table("local_carts")
