"""initial registry schema

Revision ID: 3f9a2c7d1e44
Revises:
Create Date: 2026-10-18 09:12:41.518203

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
import sqlmodel


# revision identifiers, used by Alembic.
revision: str = '3f9a2c7d1e44'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

user_roles = sa.Enum('PRODUCER', 'CERTIFIER', 'CONSUMER', 'REGULATOR', name='userroles')
source_types = sa.Enum('SOLAR', 'WIND', 'HYDRO', 'GEOTHERMAL', 'BIOMASS', 'OTHER', name='renewablesourcetype')
credit_status = sa.Enum('ISSUED', 'TRANSFERRED', 'RETIRED', 'EXPIRED', name='creditstatus')
ledger_operation = sa.Enum('ISSUE', 'TRANSFER', 'RETIRE', name='ledgeroperation')
intent_status = sa.Enum('PENDING', 'LEDGER_CONFIRMED', 'COMPLETED', 'FAILED', 'OUTCOME_UNKNOWN', name='ledgerintentstatus')


def upgrade() -> None:
    op.create_table(
        'registry_user',
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('email', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('hashed_password', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('wallet_address', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('role', user_roles, nullable=False),
        sa.Column('organization', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('is_verified', sa.Boolean(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('profile', sa.JSON(), nullable=True),
        sa.Column('settings', sa.JSON(), nullable=True),
        sa.Column('last_login', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_registry_user_username'), 'registry_user', ['username'], unique=True)
    op.create_index(op.f('ix_registry_user_email'), 'registry_user', ['email'], unique=True)
    op.create_index(op.f('ix_registry_user_wallet_address'), 'registry_user', ['wallet_address'], unique=True)

    op.create_table(
        'credit',
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('credit_id', sa.Integer(), nullable=False),
        sa.Column('blockchain_tx_hash', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('producer_id', sa.Integer(), nullable=False),
        sa.Column('certifier_id', sa.Integer(), nullable=False),
        sa.Column('renewable_source_type', source_types, nullable=False),
        sa.Column('hydrogen_amount', sa.Integer(), nullable=False),
        sa.Column('credit_amount', sa.Integer(), nullable=False),
        sa.Column('metadata_hash', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('detailed_metadata', sa.JSON(), nullable=True),
        sa.Column('status', credit_status, nullable=False),
        sa.Column('current_owner_id', sa.Integer(), nullable=False),
        sa.Column('current_balance', sa.Integer(), nullable=False),
        sa.Column('is_retired', sa.Boolean(), nullable=False),
        sa.Column('holdings', sa.JSON(), nullable=True),
        sa.Column('ownership_history', sa.JSON(), nullable=True),
        sa.Column('retirement_details', sa.JSON(), nullable=True),
        sa.Column('is_verified', sa.Boolean(), nullable=False),
        sa.Column('verification_status', sa.JSON(), nullable=True),
        sa.Column('tags', sa.JSON(), nullable=True),
        sa.Column('notes', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['producer_id'], ['registry_user.id']),
        sa.ForeignKeyConstraint(['certifier_id'], ['registry_user.id']),
        sa.ForeignKeyConstraint(['current_owner_id'], ['registry_user.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_credit_credit_id'), 'credit', ['credit_id'], unique=True)
    op.create_index(op.f('ix_credit_blockchain_tx_hash'), 'credit', ['blockchain_tx_hash'], unique=True)
    op.create_index(op.f('ix_credit_producer_id'), 'credit', ['producer_id'], unique=False)
    op.create_index(op.f('ix_credit_certifier_id'), 'credit', ['certifier_id'], unique=False)
    op.create_index(op.f('ix_credit_current_owner_id'), 'credit', ['current_owner_id'], unique=False)
    op.create_index(op.f('ix_credit_status'), 'credit', ['status'], unique=False)
    op.create_index(op.f('ix_credit_is_retired'), 'credit', ['is_retired'], unique=False)
    op.create_index(op.f('ix_credit_is_verified'), 'credit', ['is_verified'], unique=False)

    op.create_table(
        'ledger_intent',
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('operation', ledger_operation, nullable=False),
        sa.Column('status', intent_status, nullable=False),
        sa.Column('credit_id', sa.Integer(), nullable=True),
        sa.Column('requested_by_id', sa.Integer(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('transaction_hash', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('block_number', sa.Integer(), nullable=True),
        sa.Column('error', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['requested_by_id'], ['registry_user.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_ledger_intent_status'), 'ledger_intent', ['status'], unique=False)
    op.create_index(op.f('ix_ledger_intent_credit_id'), 'ledger_intent', ['credit_id'], unique=False)
    op.create_index(op.f('ix_ledger_intent_transaction_hash'), 'ledger_intent', ['transaction_hash'], unique=False)


def downgrade() -> None:
    op.drop_table('ledger_intent')
    op.drop_table('credit')
    op.drop_table('registry_user')
    for enum_type in (intent_status, ledger_operation, credit_status, source_types, user_roles):
        enum_type.drop(op.get_bind(), checkfirst=True)
