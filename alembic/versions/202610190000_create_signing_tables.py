"""create_signing_tables

Revision ID: 202610190000
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '202610190000'
down_revision = None
branch_labels = None
depends_on = None


signature_status = sa.Enum(
    'DRAFT', 'SENT_FOR_SIGNING', 'PARTIALLY_SIGNED', 'FULLY_SIGNED', 'EXPIRED', 'CANCELLED',
    name='signaturestatus'
)
signing_mode = sa.Enum('PARALLEL', 'SEQUENTIAL', name='signingmode')
signer_status = sa.Enum('PENDING', 'SIGNED', 'EXPIRED', 'DECLINED', name='signerstatus')
signature_event_type = sa.Enum(
    'SENT_FOR_SIGNING', 'SIGNED', 'DECLINED', 'TOKEN_EXPIRED', 'CYCLE_EXPIRED',
    'CANCELLED', 'REMINDER_SENT', 'FULLY_SIGNED',
    name='signatureeventtype'
)


def upgrade() -> None:
    """Create documents, signing cycles, signer assignments and signature events"""
    op.create_table('documents',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('group_id', sa.String(36), nullable=False, index=True),

        # File information
        sa.Column('file_name', sa.String(255), nullable=False),
        sa.Column('file_size', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('content_type', sa.String(100), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('uploaded_by', sa.String(36), nullable=True),

        # Signing
        sa.Column('signature_status', signature_status, nullable=False, server_default='DRAFT'),
        sa.Column('latest_cycle_id', sa.String(36), nullable=True),

        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )

    op.create_table('signing_cycles',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('document_id', sa.String(36), sa.ForeignKey('documents.id'), nullable=False, index=True),

        # Configuration
        sa.Column('signing_mode', signing_mode, nullable=False),
        sa.Column('due_date', sa.DateTime(), nullable=True),
        sa.Column('token_expiration_days', sa.Integer(), nullable=False),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(36), nullable=True),
        sa.Column('status', signature_status, nullable=False),

        # Closure
        sa.Column('closed_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_by', sa.String(36), nullable=True),
        sa.Column('cancel_reason', sa.Text(), nullable=True),

        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index(
        'uq_signing_cycles_open_document', 'signing_cycles', ['document_id'],
        unique=True,
        postgresql_where=sa.text('closed_at IS NULL'),
        sqlite_where=sa.text('closed_at IS NULL'),
    )

    op.create_table('signer_assignments',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('cycle_id', sa.String(36), sa.ForeignKey('signing_cycles.id', ondelete='CASCADE'),
                  nullable=False, index=True),
        sa.Column('signer_id', sa.String(36), nullable=False, index=True),
        sa.Column('signing_order', sa.Integer(), nullable=False),
        sa.Column('status', signer_status, nullable=False),

        # Token
        sa.Column('signing_token', sa.String(128), nullable=False, unique=True, index=True),
        sa.Column('token_expires_at', sa.DateTime(), nullable=False),
        sa.Column('token_used_at', sa.DateTime(), nullable=True),

        # Signature
        sa.Column('signed_at', sa.DateTime(), nullable=True),
        sa.Column('signature_data', sa.Text(), nullable=True),
        sa.Column('signature_hash', sa.String(64), nullable=True),
        sa.Column('signature_metadata', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(45), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('device_info', sa.Text(), nullable=True),
        sa.Column('geolocation', sa.String(100), nullable=True),

        # Other terminal transitions
        sa.Column('expired_at', sa.DateTime(), nullable=True),
        sa.Column('declined_at', sa.DateTime(), nullable=True),
        sa.Column('decline_reason', sa.Text(), nullable=True),

        # Reminders
        sa.Column('last_notified_at', sa.DateTime(), nullable=True),
        sa.Column('reminder_count', sa.Integer(), nullable=False, server_default='0'),

        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),

        sa.UniqueConstraint('cycle_id', 'signer_id', name='uq_signer_assignments_cycle_signer'),
        sa.UniqueConstraint('cycle_id', 'signing_order', name='uq_signer_assignments_cycle_order'),
    )

    op.create_table('signature_events',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('document_id', sa.String(36), sa.ForeignKey('documents.id'), nullable=False, index=True),
        sa.Column('cycle_id', sa.String(36), sa.ForeignKey('signing_cycles.id'), nullable=True, index=True),
        sa.Column('assignment_id', sa.String(36), sa.ForeignKey('signer_assignments.id'), nullable=True),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('event_type', signature_event_type, nullable=False, index=True),
        sa.Column('actor_id', sa.String(36), nullable=True),
        sa.Column('ip_address', sa.String(45), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('previous_hash', sa.String(64), nullable=True),
        sa.Column('event_hash', sa.String(64), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),

        sa.UniqueConstraint('document_id', 'sequence', name='uq_signature_events_document_sequence'),
    )


def downgrade() -> None:
    """Drop signing tables"""
    op.drop_table('signature_events')
    op.drop_table('signer_assignments')
    op.drop_index('uq_signing_cycles_open_document', table_name='signing_cycles')
    op.drop_table('signing_cycles')
    op.drop_table('documents')

    signature_event_type.drop(op.get_bind(), checkfirst=True)
    signer_status.drop(op.get_bind(), checkfirst=True)
    signing_mode.drop(op.get_bind(), checkfirst=True)
    signature_status.drop(op.get_bind(), checkfirst=True)
