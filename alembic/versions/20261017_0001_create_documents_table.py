"""create documents table

Revision ID: 20261017_0001
Revises:
Create Date: 2026-10-17 12:30:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261017_0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "documents",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("title", sa.String(length=512), nullable=False, server_default=sa.text("''")),
        sa.Column("source", sa.String(length=512), nullable=False, server_default=sa.text("''")),
        sa.Column("type", sa.String(length=64), nullable=False, server_default=sa.text("''")),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        sa.Column("embedding", sa.LargeBinary(), nullable=False),
        sa.Column("embedding_dim", sa.Integer(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )
    op.create_index("idx_documents_source", "documents", ["source"])


def downgrade() -> None:
    op.drop_index("idx_documents_source", table_name="documents")
    op.drop_table("documents")
