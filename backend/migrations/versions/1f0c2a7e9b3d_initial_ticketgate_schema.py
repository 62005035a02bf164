"""initial ticketgate schema

Revision ID: 1f0c2a7e9b3d
Revises:
Create Date: 2026-10-18 09:30:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision = '1f0c2a7e9b3d'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = inspect(bind)

    def _table_exists(table_name: str) -> bool:
        try:
            return table_name in insp.get_table_names()
        except Exception:
            return False

    if not _table_exists("users"):
        op.create_table(
            'users',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('name', sa.String(length=120), nullable=False),
            sa.Column('email', sa.String(length=255), nullable=True),
            sa.Column('phone', sa.String(length=32), nullable=True),
            sa.Column('telegram_chat_id', sa.String(length=64), nullable=True),
            sa.Column('telegram_username', sa.String(length=64), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint('id'),
        )
        with op.batch_alter_table('users', schema=None) as batch_op:
            batch_op.create_index('ix_users_email', ['email'], unique=True)
            batch_op.create_index('ix_users_phone', ['phone'], unique=False)

    if not _table_exists("events"):
        op.create_table(
            'events',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('name', sa.String(length=200), nullable=False),
            sa.Column('location', sa.String(length=200), nullable=True),
            sa.Column('starts_at', sa.DateTime(), nullable=True),
            sa.Column('price', sa.Numeric(precision=12, scale=2), nullable=True),
            sa.Column('capacity', sa.Integer(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint('id'),
        )
        with op.batch_alter_table('events', schema=None) as batch_op:
            batch_op.create_index('ix_events_name', ['name'], unique=False)

    if not _table_exists("event_registrations"):
        op.create_table(
            'event_registrations',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('event_id', sa.Integer(), nullable=False),
            sa.Column('status', sa.String(length=32), nullable=False),
            sa.Column('price_at_registration', sa.Numeric(precision=12, scale=2), nullable=True),
            sa.Column('checked_in', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('checked_in_at', sa.DateTime(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.Column('updated_at', sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(['user_id'], ['users.id']),
            sa.ForeignKeyConstraint(['event_id'], ['events.id']),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('user_id', 'event_id', name='uq_event_registration_user_event'),
        )
        with op.batch_alter_table('event_registrations', schema=None) as batch_op:
            batch_op.create_index('ix_event_registrations_user_id', ['user_id'], unique=False)
            batch_op.create_index('ix_event_registrations_event_id', ['event_id'], unique=False)

    if not _table_exists("invoices"):
        op.create_table(
            'invoices',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('invoice_id', sa.String(length=64), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('event_id', sa.Integer(), nullable=True),
            sa.Column('registration_id', sa.Integer(), nullable=True),
            sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
            sa.Column('currency', sa.String(length=8), nullable=False),
            sa.Column('status', sa.String(length=16), nullable=False),
            sa.Column('transaction_id', sa.String(length=64), nullable=True),
            sa.Column('payment_method', sa.String(length=16), nullable=True),
            sa.Column('paid_at', sa.DateTime(), nullable=True),
            sa.Column('receipt_data', sa.Text(), nullable=True),
            sa.Column('event_name', sa.String(length=200), nullable=True),
            sa.Column('event_place', sa.String(length=200), nullable=True),
            sa.Column('event_time', sa.DateTime(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.Column('updated_at', sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(['user_id'], ['users.id']),
            sa.ForeignKeyConstraint(['event_id'], ['events.id']),
            sa.ForeignKeyConstraint(['registration_id'], ['event_registrations.id']),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('invoice_id'),
            sa.UniqueConstraint('transaction_id'),
        )
        with op.batch_alter_table('invoices', schema=None) as batch_op:
            batch_op.create_index('ix_invoices_user_id', ['user_id'], unique=False)
            batch_op.create_index('ix_invoices_event_id', ['event_id'], unique=False)
            batch_op.create_index('ix_invoices_status', ['status'], unique=False)

    if not _table_exists("audit_logs"):
        op.create_table(
            'audit_logs',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('actor_user_id', sa.Integer(), nullable=True),
            sa.Column('action', sa.String(length=64), nullable=False),
            sa.Column('target_type', sa.String(length=64), nullable=True),
            sa.Column('target_id', sa.String(length=64), nullable=True),
            sa.Column('meta', sa.Text(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint('id'),
        )


def downgrade():
    op.drop_table('audit_logs')
    op.drop_table('invoices')
    op.drop_table('event_registrations')
    op.drop_table('events')
    op.drop_table('users')
