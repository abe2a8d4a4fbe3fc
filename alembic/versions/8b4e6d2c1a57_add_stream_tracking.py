"""add_stream_tracking

Revision ID: 8b4e6d2c1a57
Revises: 3f1c2a9d7b10
Create Date: 2026-02-02 18:07:55.902113

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8b4e6d2c1a57'
down_revision: Union[str, Sequence[str], None] = '3f1c2a9d7b10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # Streaming state and prompt counter used for admission control
    op.add_column(
        'sessions',
        sa.Column('stream_status', sa.String(), nullable=False, server_default='idle'),
    )
    op.add_column(
        'sessions',
        sa.Column('prompt_sequence', sa.Integer(), nullable=False, server_default='0'),
    )

    # Persisted SSE events for reconnection
    op.create_table(
        'session_events',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'session_id',
            sa.String(),
            sa.ForeignKey('sessions.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('prompt_id', sa.String(), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('data', sa.Text(), nullable=False),
        sa.Column('created_at', sa.String(), nullable=False),
        sa.UniqueConstraint(
            'session_id', 'prompt_id', 'sequence', name='idx_session_events_unique'
        ),
    )
    op.create_index('ix_session_events_session_id', 'session_events', ['session_id'])
    op.create_index('idx_session_events_created', 'session_events', ['created_at'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('idx_session_events_created', table_name='session_events')
    op.drop_index('ix_session_events_session_id', table_name='session_events')
    op.drop_table('session_events')
    with op.batch_alter_table('sessions') as batch_op:
        batch_op.drop_column('prompt_sequence')
        batch_op.drop_column('stream_status')
