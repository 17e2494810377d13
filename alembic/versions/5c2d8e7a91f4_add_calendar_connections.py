"""add calendar connections

Revision ID: 5c2d8e7a91f4
Revises:
Create Date: 2026-10-19 09:12:44.318204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '5c2d8e7a91f4'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""

    # 1. Create calendar_connections table
    op.create_table(
        'calendar_connections',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('account_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('professionals.id', ondelete='CASCADE'), nullable=False),
        sa.Column('provider', sa.String(32), nullable=False, server_default='google'),
        sa.Column('access_token_encrypted', sa.LargeBinary(), nullable=False),
        sa.Column('refresh_token_encrypted', sa.LargeBinary(), nullable=False),
        sa.Column('token_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('token_version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('calendar_id', sa.String(), nullable=True),
        sa.Column('time_zone', sa.String(64), nullable=True),
        sa.Column('sync_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('needs_reauth', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_sync_error', sa.Text(), nullable=True),
        sa.Column('webhook_channel_id', sa.String(64), nullable=True),
        sa.Column('webhook_resource_id', sa.String(), nullable=True),
        sa.Column('webhook_expiration', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.UniqueConstraint('account_id', 'provider', name='uq_calendar_connections_account_provider'),
    )
    op.create_index('ix_calendar_connections_webhook_channel_id', 'calendar_connections', ['webhook_channel_id'])

    # 2. Booking -> external event mapping
    op.add_column('bookings', sa.Column('external_event_id', sa.String(), nullable=True))

    # 3. Sync rows are deleted and re-inserted by (account, reason, date) on every import
    op.create_index(
        'ix_availability_overrides_account_reason_date',
        'availability_overrides',
        ['account_id', 'reason', 'override_date'],
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_availability_overrides_account_reason_date', table_name='availability_overrides')
    op.drop_column('bookings', 'external_event_id')
    op.drop_index('ix_calendar_connections_webhook_channel_id', table_name='calendar_connections')
    op.drop_table('calendar_connections')
