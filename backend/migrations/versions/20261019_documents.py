"""Create documents table

Revision ID: 20261019_documents
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_documents"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "documents",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("container", sa.String(64), nullable=False),
        sa.Column("doc_id", sa.String(191), nullable=False),
        sa.Column("body", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("container", "doc_id", name="uq_documents_container_doc"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_documents_container", "documents", ["container"])
    op.create_index("ix_documents_container_created", "documents", ["container", "created_at"])


def downgrade():
    op.drop_index("ix_documents_container_created", table_name="documents")
    op.drop_index("ix_documents_container", table_name="documents")
    op.drop_table("documents")
