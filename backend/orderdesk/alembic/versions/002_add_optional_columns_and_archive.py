"""Add draft flag, shipping, blob pathnames, payment log and archive

Revision ID: 002_add_optional_columns_and_archive
Revises: 001_create_order_schema
Create Date: 2025-05-12 14:30:00.000000

Databases still at 001 keep working; the application probes for these
columns and tables at startup.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '002_add_optional_columns_and_archive'
down_revision = '001_create_order_schema'
branch_labels = None
depends_on = None


def upgrade():
    op.add_column('orders', sa.Column('is_draft', sa.Boolean(), nullable=False, server_default=sa.false()))
    op.add_column('orders', sa.Column('shipping', sa.Numeric(12, 2), nullable=False, server_default='0'))
    op.add_column('order_documents', sa.Column('blob_pathname', sa.Text(), nullable=True))

    # Create order_payment_logs table
    op.create_table(
        'order_payment_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('previous_status', sa.Text(), nullable=True),
        sa.Column('new_status', sa.Text(), nullable=False),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
    )
    op.create_index('ix_order_payment_logs_order_id', 'order_payment_logs', ['order_id'])

    # Create deleted_archive_entries table
    op.create_table(
        'deleted_archive_entries',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('item_type', sa.Text(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('document_id', sa.Integer(), nullable=True),
        sa.Column('parent_entry_id', sa.Integer(), nullable=True),
        sa.Column('label', sa.Text(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['parent_entry_id'], ['deleted_archive_entries.id']),
        sa.CheckConstraint("item_type IN ('order','pdf')", name='check_archive_item_type'),
    )
    op.create_index('ix_deleted_archive_entries_order_id', 'deleted_archive_entries', ['order_id'])
    op.create_index('ix_deleted_archive_entries_document_id', 'deleted_archive_entries', ['document_id'])
    op.create_index('ix_deleted_archive_entries_expires_at', 'deleted_archive_entries', ['expires_at'])


def downgrade():
    op.drop_table('deleted_archive_entries')
    op.drop_table('order_payment_logs')
    op.drop_column('order_documents', 'blob_pathname')
    op.drop_column('orders', 'shipping')
    op.drop_column('orders', 'is_draft')
