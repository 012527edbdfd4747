"""Initial migration - create ledger, proof log, anomaly and actor tables

Revision ID: 001_initial
Revises:
Create Date: 2024-01-01 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None

IMMUTABLE_TABLES = ('economic_ledger_tx', 'quality_ledger_tx', 'zkp_logs')


def _chain_columns():
    return [
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('tx_id', sa.String(64), nullable=False, unique=True),
        sa.Column('tx_hash', sa.String(64), nullable=False, unique=True),
        sa.Column('prev_tx_hash', sa.String(64), nullable=True, unique=True),
        sa.Column('batch_id', sa.String(100), nullable=True),
        sa.Column('shipment_id', sa.String(100), nullable=True),
    ]


def upgrade() -> None:
    # Create actors table (owned by the registration service; read for display)
    op.create_table(
        'actors',
        sa.Column('did', sa.String(200), primary_key=True),
        sa.Column('role', sa.String(20), nullable=False),
        sa.Column('name', sa.String(200), nullable=True),
        sa.Column('display_name', sa.String(200), nullable=True),
        sa.Column('address', sa.String(500), nullable=True),
        sa.Column('trust_score', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()')),
    )
    op.create_index('ix_actors_role', 'actors', ['role'])

    # Create economic_ledger_tx table (immutable - INSERT only)
    op.create_table(
        'economic_ledger_tx',
        *_chain_columns(),
        sa.Column('payer_did', sa.String(200), nullable=True),
        sa.Column('payee_did', sa.String(200), nullable=True),
        sa.Column('from_party', sa.String(50), nullable=True),
        sa.Column('to_party', sa.String(50), nullable=True),
        sa.Column('product', sa.String(200), nullable=True),
        sa.Column('quantity', sa.Float(), nullable=True),
        sa.Column('amount', sa.Float(), nullable=True),
        sa.Column('payment_method', sa.String(50), nullable=True),
        sa.Column('margin', sa.Float(), nullable=True),
        sa.Column('meta', postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_economic_ledger_tx_batch_id', 'economic_ledger_tx', ['batch_id'])
    op.create_index('ix_economic_ledger_tx_created_at', 'economic_ledger_tx', ['created_at'])
    op.create_index('ix_economic_ledger_tx_payer_did', 'economic_ledger_tx', ['payer_did'])
    op.create_index('ix_economic_ledger_tx_payee_did', 'economic_ledger_tx', ['payee_did'])

    # Create quality_ledger_tx table (immutable - INSERT only)
    op.create_table(
        'quality_ledger_tx',
        *_chain_columns(),
        sa.Column('actor_did', sa.String(200), nullable=True),
        sa.Column('stage', sa.String(50), nullable=True),
        sa.Column('quality_score', sa.Float(), nullable=True),
        sa.Column('moisture_level', sa.Float(), nullable=True),
        sa.Column('temperature', sa.Float(), nullable=True),
        sa.Column('spoilage_detected', sa.Boolean(), nullable=True),
        sa.Column('ai_verification_hash', sa.String(64), nullable=True),
        sa.Column('iot_merkle_root', sa.String(64), nullable=True),
        sa.Column('quality_data', postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_quality_ledger_tx_batch_id', 'quality_ledger_tx', ['batch_id'])
    op.create_index('ix_quality_ledger_tx_created_at', 'quality_ledger_tx', ['created_at'])
    op.create_index('ix_quality_ledger_tx_actor_did', 'quality_ledger_tx', ['actor_did'])
    op.create_index('ix_quality_ledger_tx_stage', 'quality_ledger_tx', ['stage'])

    # Create zkp_logs table (immutable - INSERT only)
    op.create_table(
        'zkp_logs',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('did', sa.String(200), nullable=False),
        sa.Column('batch_id', sa.String(100), nullable=True),
        sa.Column('proof_type', sa.String(20), nullable=False),
        sa.Column('proof_payload', sa.Text(), nullable=False),
        sa.Column('verified', sa.Boolean(), nullable=False),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_zkp_logs_batch_id', 'zkp_logs', ['batch_id'])
    op.create_index('ix_zkp_logs_did', 'zkp_logs', ['did'])
    op.create_index('ix_zkp_logs_created_at', 'zkp_logs', ['created_at'])

    # Create anomalies table
    op.create_table(
        'anomalies',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('batch_id', sa.String(100), nullable=True),
        sa.Column('did', sa.String(200), nullable=True),
        sa.Column('anomaly_type', sa.String(50), nullable=False),
        sa.Column('details', postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='FAILED'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_anomalies_batch_id', 'anomalies', ['batch_id'])
    op.create_index('ix_anomalies_type', 'anomalies', ['anomaly_type'])

    # Enforce ledger immutability via triggers. Triggers fire even for the
    # table owner, which REVOKE does not cover.
    op.execute("""
        CREATE OR REPLACE FUNCTION agritrace_ledger_immutable()
        RETURNS TRIGGER LANGUAGE plpgsql AS $$
        BEGIN
            RAISE EXCEPTION
                '% is immutable: % is not permitted on this table. (AgriTrace integrity constraint)',
                TG_TABLE_NAME, TG_OP;
        END;
        $$
    """)
    for table in IMMUTABLE_TABLES:
        op.execute(f"""
            DROP TRIGGER IF EXISTS trg_{table}_no_update ON {table};
            CREATE TRIGGER trg_{table}_no_update
                BEFORE UPDATE ON {table}
                FOR EACH ROW EXECUTE FUNCTION agritrace_ledger_immutable()
        """)
        op.execute(f"""
            DROP TRIGGER IF EXISTS trg_{table}_no_delete ON {table};
            CREATE TRIGGER trg_{table}_no_delete
                BEFORE DELETE ON {table}
                FOR EACH ROW EXECUTE FUNCTION agritrace_ledger_immutable()
        """)


def downgrade() -> None:
    for table in IMMUTABLE_TABLES:
        op.execute(f"DROP TRIGGER IF EXISTS trg_{table}_no_update ON {table}")
        op.execute(f"DROP TRIGGER IF EXISTS trg_{table}_no_delete ON {table}")
    op.execute("DROP FUNCTION IF EXISTS agritrace_ledger_immutable()")

    op.drop_table('anomalies')
    op.drop_table('zkp_logs')
    op.drop_table('quality_ledger_tx')
    op.drop_table('economic_ledger_tx')
    op.drop_table('actors')
