
"""Migração inicial: mapa conversa→tópico e filtros."""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.create_table(
        "topic_mappings",
        sa.Column("conversation_id", sa.String(128), primary_key=True),
        sa.Column("topic_id", sa.BigInteger, nullable=False),
        sa.Column("topic_name", sa.String(255), nullable=True),
        sa.Column("avatar_url", sa.Text, nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True)),
        sa.Column("last_activity", sa.TIMESTAMP(timezone=True)),
        sa.UniqueConstraint("topic_id", name="uq_topic_mappings_topic"),
    )
    op.create_table(
        "bridge_filters",
        sa.Column("word", sa.String(64), primary_key=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True)),
    )

def downgrade() -> None:
    op.drop_table("bridge_filters")
    op.drop_table("topic_mappings")
