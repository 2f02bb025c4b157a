"""Create order ledger and document tables

Revision ID: 001_create_order_schema
Revises: 
Create Date: 2025-03-03 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_create_order_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # Create orders table
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_number', sa.Text(), nullable=False),
        sa.Column('customer_type', sa.Text(), nullable=False),
        sa.Column('organization_name', sa.Text(), nullable=True),
        sa.Column('institution_name', sa.Text(), nullable=True),
        sa.Column('tax_id', sa.Text(), nullable=True),
        sa.Column('contact_name', sa.Text(), nullable=False),
        sa.Column('email', sa.Text(), nullable=False),
        sa.Column('phone', sa.Text(), nullable=True),
        sa.Column('delivery_address', sa.Text(), nullable=True),
        sa.Column('postal_code', sa.Text(), nullable=True),
        sa.Column('city', sa.Text(), nullable=True),
        sa.Column('reference', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('status', sa.Text(), nullable=False, server_default='received'),
        sa.Column('payment_status', sa.Text(), nullable=False, server_default='unpaid'),
        sa.Column('payment_notes', sa.Text(), nullable=True),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('tax', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('total', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_orders_order_number', 'orders', ['order_number'], unique=True)
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])
    op.create_index('ix_orders_deleted_at', 'orders', ['deleted_at'])

    # Create order_items table
    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('unit', sa.Text(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('discount_percentage', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('line_total', sa.Numeric(12, 2), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.CheckConstraint('quantity >= 1', name='check_order_items_quantity'),
        sa.CheckConstraint('discount_percentage BETWEEN 0 AND 100', name='check_order_items_discount'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])

    # Create order_documents table
    op.create_table(
        'order_documents',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.Text(), nullable=False),
        sa.Column('filename', sa.Text(), nullable=False),
        sa.Column('blob_url', sa.Text(), nullable=False),
        sa.Column('document_number', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
    )
    op.create_index(
        'idx_order_documents_order_type_created',
        'order_documents',
        ['order_id', 'type', 'created_at'],
    )

    # Create order_attachments table
    op.create_table(
        'order_attachments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('attachment_type', sa.Text(), nullable=False, server_default='purchase_order'),
        sa.Column('filename', sa.Text(), nullable=False),
        sa.Column('blob_url', sa.Text(), nullable=False),
        sa.Column('blob_pathname', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
    )
    op.create_index('ix_order_attachments_order_id', 'order_attachments', ['order_id'])

    # Create document_counters table
    op.create_table(
        'document_counters',
        sa.Column('counter_name', sa.Text(), primary_key=True),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
    )

    # Seed one counter per numbered document type
    op.execute("""
        INSERT INTO document_counters (counter_name, next_number) VALUES
        ('order_summary', 1),
        ('pro_forma', 1),
        ('delivery_note', 1),
        ('invoice', 1)
        ON CONFLICT (counter_name) DO NOTHING
    """)


def downgrade():
    # Drop tables in reverse order
    op.drop_table('document_counters')
    op.drop_table('order_attachments')
    op.drop_table('order_documents')
    op.drop_table('order_items')
    op.drop_table('orders')
