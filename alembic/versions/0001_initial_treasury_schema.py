"""initial treasury schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

PAYMENT_STATUS = ('Pending', 'AwaitingVerification', 'Paid', 'Failed')
PAYMENT_METHOD = ('UPI', 'Cash', 'Bank Transfer', 'Other')


def upgrade() -> None:
    op.create_table(
        'user',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=50), nullable=False),
        sa.Column('usn', sa.String(length=20), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('year', sa.Enum('1st', '2nd', '3rd', '4th', name='yeartier', native_enum=False), nullable=False),
        sa.Column('branch', sa.String(length=100), nullable=True),
        sa.Column('role', sa.Enum('member', 'treasurer', name='userroleenum', native_enum=False), nullable=False),
        sa.Column('total_paid', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_user_usn', 'user', ['usn'], unique=True)
    op.create_index('ix_user_email', 'user', ['email'], unique=True)

    op.create_table(
        'club_settings',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('singleton_key', sa.Integer(), nullable=False),
        sa.Column('club_name', sa.String(length=100), nullable=False),
        sa.Column('treasurer_upi', sa.String(length=100), nullable=True),
        sa.Column('treasurer_name', sa.String(length=100), nullable=True),
        sa.Column('payment_instructions', sa.Text(), nullable=False),
        sa.Column('first_year_amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('second_year_amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('third_year_amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('fourth_year_amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('payment_deadline_day', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('singleton_key'),
    )

    op.create_table(
        'treasurer_upi_history',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('club_settings_id', sa.Uuid(), nullable=False),
        sa.Column('upi_id', sa.String(length=100), nullable=False),
        sa.Column('treasurer_name', sa.String(length=100), nullable=True),
        sa.Column('set_by', sa.Uuid(), nullable=False),
        sa.Column('set_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.ForeignKeyConstraint(['club_settings_id'], ['club_settings.id']),
        sa.ForeignKeyConstraint(['set_by'], ['user.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_treasurer_upi_history_club_settings_id', 'treasurer_upi_history', ['club_settings_id'])

    op.create_table(
        'monthly_record_template',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('month', sa.String(length=10), nullable=False),
        sa.Column('month_number', sa.Integer(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('deadline', sa.DateTime(), nullable=False),
        sa.Column('first_year_amount', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('second_year_amount', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('third_year_amount', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('fourth_year_amount', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('included_years', sa.JSON(), nullable=False),
        sa.Column('status', sa.Enum('active', 'completed', 'cancelled', name='templatestatus', native_enum=False), nullable=False),
        sa.Column('created_by', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['created_by'], ['user.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_monthly_record_template_month', 'monthly_record_template', ['month', 'year', 'status'])

    op.create_table(
        'payment_record',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('member_id', sa.Uuid(), nullable=False),
        sa.Column('month', sa.String(length=10), nullable=False),
        sa.Column('month_number', sa.Integer(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('academic_year', sa.String(length=9), nullable=False),
        sa.Column('amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('status', sa.Enum(*PAYMENT_STATUS, name='paymentstatus', native_enum=False), nullable=False),
        sa.Column('payment_reference', sa.String(length=50), nullable=False),
        sa.Column('payment_method', sa.Enum(*PAYMENT_METHOD, name='paymentmethod', native_enum=False), nullable=False),
        sa.Column('deadline', sa.DateTime(), nullable=False),
        sa.Column('member_confirmed_payment', sa.Boolean(), nullable=False),
        sa.Column('member_confirmed_date', sa.DateTime(), nullable=True),
        sa.Column('payment_proof', sa.String(length=500), nullable=True),
        sa.Column('payment_date', sa.DateTime(), nullable=True),
        sa.Column('verified_by', sa.Uuid(), nullable=True),
        sa.Column('verified_date', sa.DateTime(), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('resubmitted_photo', sa.String(length=500), nullable=True),
        sa.Column('resubmitted_date', sa.DateTime(), nullable=True),
        sa.Column('resubmission_note', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['member_id'], ['user.id']),
        sa.ForeignKeyConstraint(['verified_by'], ['user.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('member_id', 'month', 'year', name='uq_payment_record_member_month'),
    )
    op.create_index('ix_payment_record_member_id', 'payment_record', ['member_id'])
    op.create_index('ix_payment_record_payment_reference', 'payment_record', ['payment_reference'], unique=True)
    op.create_index('idx_payment_record_status_deadline', 'payment_record', ['status', 'deadline'])

    op.create_table(
        'payment_status_history',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('payment_record_id', sa.Uuid(), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('status', sa.Enum(*PAYMENT_STATUS, name='paymentstatus', native_enum=False), nullable=False),
        sa.Column('changed_by', sa.Uuid(), nullable=True),
        sa.Column('changed_at', sa.DateTime(), nullable=False),
        sa.Column('reason', sa.String(length=300), nullable=True),
        sa.ForeignKeyConstraint(['payment_record_id'], ['payment_record.id']),
        sa.ForeignKeyConstraint(['changed_by'], ['user.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payment_record_id', 'sequence', name='uq_payment_status_history_sequence'),
    )
    op.create_index('ix_payment_status_history_payment_record_id', 'payment_status_history', ['payment_record_id'])

    op.create_table(
        'treasurer_note',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('payment_record_id', sa.Uuid(), nullable=False),
        sa.Column('acknowledged_cash', sa.Boolean(), nullable=False),
        sa.Column('method', sa.Enum(*PAYMENT_METHOD, name='paymentmethod', native_enum=False), nullable=False),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('marked_by', sa.Uuid(), nullable=False),
        sa.Column('marked_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['payment_record_id'], ['payment_record.id']),
        sa.ForeignKeyConstraint(['marked_by'], ['user.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_treasurer_note_payment_record_id', 'treasurer_note', ['payment_record_id'], unique=True)

    op.create_table(
        'wallet',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('singleton_key', sa.Integer(), nullable=False),
        sa.Column('balance', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('last_updated_by', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['last_updated_by'], ['user.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('singleton_key'),
    )

    op.create_table(
        'wallet_transaction',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('wallet_id', sa.Uuid(), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('type', sa.Enum('credit', 'debit', name='wallettransactiontype', native_enum=False), nullable=False),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('description', sa.String(length=200), nullable=False),
        sa.Column('actor_id', sa.Uuid(), nullable=False),
        sa.Column('payment_record_id', sa.Uuid(), nullable=True),
        sa.Column('date', sa.DateTime(), nullable=False),
        sa.Column('previous_balance', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('new_balance', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.ForeignKeyConstraint(['wallet_id'], ['wallet.id']),
        sa.ForeignKeyConstraint(['actor_id'], ['user.id']),
        sa.ForeignKeyConstraint(['payment_record_id'], ['payment_record.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payment_record_id'),
        sa.UniqueConstraint('wallet_id', 'sequence', name='uq_wallet_transaction_sequence'),
    )
    op.create_index('ix_wallet_transaction_wallet_id', 'wallet_transaction', ['wallet_id'])


def downgrade() -> None:
    op.drop_index('ix_wallet_transaction_wallet_id', table_name='wallet_transaction')
    op.drop_table('wallet_transaction')
    op.drop_table('wallet')
    op.drop_index('ix_treasurer_note_payment_record_id', table_name='treasurer_note')
    op.drop_table('treasurer_note')
    op.drop_index('ix_payment_status_history_payment_record_id', table_name='payment_status_history')
    op.drop_table('payment_status_history')
    op.drop_index('idx_payment_record_status_deadline', table_name='payment_record')
    op.drop_index('ix_payment_record_payment_reference', table_name='payment_record')
    op.drop_index('ix_payment_record_member_id', table_name='payment_record')
    op.drop_table('payment_record')
    op.drop_index('idx_monthly_record_template_month', table_name='monthly_record_template')
    op.drop_table('monthly_record_template')
    op.drop_index('ix_treasurer_upi_history_club_settings_id', table_name='treasurer_upi_history')
    op.drop_table('treasurer_upi_history')
    op.drop_table('club_settings')
    op.drop_index('ix_user_email', table_name='user')
    op.drop_index('ix_user_usn', table_name='user')
    op.drop_table('user')
