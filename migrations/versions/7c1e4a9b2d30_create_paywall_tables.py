"""Create paywall tables

Revision ID: 7c1e4a9b2d30
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '7c1e4a9b2d30'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('reading_requests',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('mode', sa.String(length=20), nullable=False),
        sa.Column('person_a', sa.JSON(), nullable=False),
        sa.Column('person_b', sa.JSON(), nullable=False),
        sa.Column('preview_result', sa.JSON(), nullable=True),
        sa.Column('full_result', sa.JSON(), nullable=True),
        sa.Column('content_status', sa.String(length=20), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_reading_requests_content_status', 'reading_requests', ['content_status'], unique=False)

    op.create_table('orders',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('reading_request_id', sa.String(length=36), nullable=False),
        sa.Column('stripe_session_id', sa.String(length=255), nullable=True),
        sa.Column('stripe_payment_intent_id', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('idempotency_key', sa.String(length=64), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=10), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.ForeignKeyConstraint(['reading_request_id'], ['reading_requests.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key'),
        sa.UniqueConstraint('stripe_session_id')
    )
    op.create_index('ix_orders_reading_request_id', 'orders', ['reading_request_id'], unique=False)

    op.create_table('paywall_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('event_type', sa.String(length=255), nullable=False),
        sa.Column('reading_request_id', sa.String(length=36), nullable=True),
        sa.Column('order_id', sa.String(length=36), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['reading_request_id'], ['reading_requests.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_paywall_events_event_type', 'paywall_events', ['event_type'], unique=False)

    op.create_table('stripe_events',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('stripe_event_id', sa.String(length=255), nullable=False),
        sa.Column('event_type', sa.String(length=255), nullable=False),
        sa.Column('outcome', sa.String(length=50), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('stripe_event_id')
    )


def downgrade():
    op.drop_table('stripe_events')
    op.drop_index('ix_paywall_events_event_type', table_name='paywall_events')
    op.drop_table('paywall_events')
    op.drop_index('ix_orders_reading_request_id', table_name='orders')
    op.drop_table('orders')
    op.drop_index('ix_reading_requests_content_status', table_name='reading_requests')
    op.drop_table('reading_requests')
