"""add_question_embedding

Revision ID: 9a41f7c3e2d6
Revises: 5c2e8a41d0b3
Create Date: 2026-10-02 16:41:55.502317

"""

import logging
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from pgvector.sqlalchemy import Vector

from studyprep.core.config import get_settings

logger = logging.getLogger("alembic.runtime.migration")


# revision identifiers, used by Alembic.
revision: str = "9a41f7c3e2d6"
down_revision: Union[str, Sequence[str], None] = "5c2e8a41d0b3"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_INDEX_NAME = "ix_questions_embedding_hnsw"


def _has_embedding_column(conn) -> bool:
    columns = sa.inspect(conn).get_columns("questions")
    return any(c["name"] == "embedding" for c in columns)


def upgrade() -> None:
    """Add the nullable embedding column. pgvector on PostgreSQL, JSON text on SQLite.

    The pgvector column is sized from EMBEDDING_DIMENSION at upgrade time; changing the
    setting later requires a new migration, otherwise the store reports no vector capability.
    """
    conn = op.get_bind()
    if _has_embedding_column(conn):
        logger.info("questions.embedding already present, skipping")
        return

    if conn.dialect.name == "postgresql":
        op.execute("CREATE EXTENSION IF NOT EXISTS vector")
        dimension = get_settings().embedding_dimension
        op.add_column("questions", sa.Column("embedding", Vector(dimension), nullable=True))
        op.execute(
            f"CREATE INDEX IF NOT EXISTS {_INDEX_NAME} ON questions "
            "USING hnsw (embedding vector_l2_ops)"
        )
    else:
        op.add_column("questions", sa.Column("embedding", sa.Text(), nullable=True))


def downgrade() -> None:
    """Drop the embedding column (and its index). The pgvector extension is left installed."""
    conn = op.get_bind()
    if not _has_embedding_column(conn):
        logger.warning("questions.embedding not present, nothing to drop")
        return
    if conn.dialect.name == "postgresql":
        op.execute(f"DROP INDEX IF EXISTS {_INDEX_NAME}")
    op.drop_column("questions", "embedding")
