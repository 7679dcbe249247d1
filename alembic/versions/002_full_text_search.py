"""Generated full-text search vector on documents

Revision ID: 002
Revises: 001
Create Date: 2024-01-12 09:00:00.000000

"""
from typing import Sequence, Union
from alembic import op

# revision identifiers
revision: str = '002'
down_revision: Union[str, None] = '001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        ALTER TABLE documents
        ADD COLUMN search_vector tsvector
        GENERATED ALWAYS AS (
            to_tsvector('english', coalesce(title, '') || ' ' || coalesce(content, ''))
        ) STORED
    """)
    op.create_index('documents_search_vector_idx', 'documents', ['search_vector'], postgresql_using='gin')


def downgrade() -> None:
    op.drop_index('documents_search_vector_idx', table_name='documents')
    op.drop_column('documents', 'search_vector')
