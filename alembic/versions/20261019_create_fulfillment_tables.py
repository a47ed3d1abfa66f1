"""Create delivery note fulfillment tables.

Revision ID: create_fulfillment_tables
Revises:
Create Date: 2026-10-19

Directory tables (business units, warehouses, users), inventory balances
read by the availability oracle, stock requests, delivery notes, pick lists
and the document sequence counter.
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = 'create_fulfillment_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


QTY = sa.Numeric(20, 4)


def _timestamps(updated_nullable: bool = True):
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=updated_nullable, server_default=sa.text('NOW()')),
    ]


def upgrade() -> None:
    """Create fulfillment tables."""

    # ==================== directory ====================
    op.create_table(
        'business_units',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('code', sa.String(20), nullable=False, unique=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('is_active', sa.Boolean, server_default='true'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_business_units_code', 'business_units', ['code'])

    op.create_table(
        'warehouses',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('code', sa.String(20), nullable=False, unique=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('business_unit_id', UUID(as_uuid=True), sa.ForeignKey('business_units.id')),
        sa.Column('address_line1', sa.String(255)),
        sa.Column('address_line2', sa.String(255)),
        sa.Column('city', sa.String(100)),
        sa.Column('state', sa.String(100)),
        sa.Column('pincode', sa.String(10)),
        sa.Column('is_active', sa.Boolean, server_default='true'),
        *_timestamps(updated_nullable=False),
    )
    op.create_index('ix_warehouses_code', 'warehouses', ['code'])
    op.create_index('ix_warehouses_business_unit_id', 'warehouses', ['business_unit_id'])

    op.create_table(
        'users',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100)),
        sa.Column('business_unit_id', UUID(as_uuid=True), sa.ForeignKey('business_units.id')),
        sa.Column('is_active', sa.Boolean, server_default='true'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_users_email', 'users', ['email'])
    op.create_index('ix_users_business_unit_id', 'users', ['business_unit_id'])

    # ==================== inventory ====================
    op.create_table(
        'inventory_balances',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('warehouse_id', UUID(as_uuid=True), sa.ForeignKey('warehouses.id'), nullable=False),
        sa.Column('item_id', UUID(as_uuid=True), nullable=False),
        sa.Column('on_hand_quantity', QTY, server_default='0'),
        sa.Column('reserved_quantity', QTY, server_default='0'),
        sa.Column('available_quantity', QTY, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()')),
        sa.UniqueConstraint('warehouse_id', 'item_id', name='uq_inventory_balance'),
    )
    op.create_index('ix_inventory_balances_warehouse_id', 'inventory_balances', ['warehouse_id'])
    op.create_index('ix_inventory_balances_item_id', 'inventory_balances', ['item_id'])

    # ==================== stock requests ====================
    op.create_table(
        'stock_requests',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('request_code', sa.String(50), nullable=False, unique=True),
        sa.Column('status', sa.String(50), nullable=False, server_default='draft'),
        sa.Column('priority', sa.Integer, server_default='5'),
        sa.Column('requesting_warehouse_id', UUID(as_uuid=True), sa.ForeignKey('warehouses.id'), nullable=False),
        sa.Column('fulfilling_warehouse_id', UUID(as_uuid=True), sa.ForeignKey('warehouses.id')),
        sa.Column('request_date', sa.Date),
        sa.Column('required_date', sa.Date),
        sa.Column('notes', sa.Text),
        *_timestamps(),
    )
    op.create_index('ix_stock_requests_request_code', 'stock_requests', ['request_code'])
    op.create_index('ix_stock_requests_status', 'stock_requests', ['status'])
    op.create_index('ix_stock_requests_requesting_warehouse_id', 'stock_requests', ['requesting_warehouse_id'])
    op.create_index('ix_stock_requests_fulfilling_warehouse_id', 'stock_requests', ['fulfilling_warehouse_id'])

    op.create_table(
        'stock_request_items',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('stock_request_id', UUID(as_uuid=True),
                  sa.ForeignKey('stock_requests.id', ondelete='CASCADE'), nullable=False),
        sa.Column('item_id', UUID(as_uuid=True), nullable=False),
        sa.Column('uom_id', UUID(as_uuid=True), nullable=False),
        sa.Column('requested_quantity', QTY, nullable=False),
        sa.Column('received_quantity', QTY, nullable=False, server_default='0'),
        sa.Column('notes', sa.Text),
        sa.CheckConstraint('received_quantity >= 0', name='ck_sr_item_received_non_negative'),
        sa.CheckConstraint('received_quantity <= requested_quantity', name='ck_sr_item_received_le_requested'),
    )
    op.create_index('ix_stock_request_items_stock_request_id', 'stock_request_items', ['stock_request_id'])
    op.create_index('ix_stock_request_items_item_id', 'stock_request_items', ['item_id'])

    # ==================== delivery notes ====================
    user_fk = lambda name: sa.Column(name, UUID(as_uuid=True), sa.ForeignKey('users.id'))  # noqa: E731

    op.create_table(
        'delivery_notes',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('dn_number', sa.String(50), nullable=False, unique=True),
        sa.Column('status', sa.String(50), nullable=False, server_default='draft'),
        sa.Column('requesting_warehouse_id', UUID(as_uuid=True), sa.ForeignKey('warehouses.id'), nullable=False),
        sa.Column('fulfilling_warehouse_id', UUID(as_uuid=True), sa.ForeignKey('warehouses.id'), nullable=False),
        sa.Column('confirmed_at', sa.DateTime(timezone=True)),
        user_fk('confirmed_by'),
        sa.Column('picking_started_at', sa.DateTime(timezone=True)),
        user_fk('picking_started_by'),
        sa.Column('picking_completed_at', sa.DateTime(timezone=True)),
        user_fk('picking_completed_by'),
        sa.Column('dispatched_at', sa.DateTime(timezone=True)),
        user_fk('dispatched_by'),
        sa.Column('received_at', sa.DateTime(timezone=True)),
        user_fk('received_by'),
        sa.Column('voided_at', sa.DateTime(timezone=True)),
        user_fk('voided_by'),
        sa.Column('void_reason', sa.Text),
        sa.Column('driver_name', sa.String(150)),
        sa.Column('driver_signature', sa.Text),
        sa.Column('notes', sa.Text),
        sa.Column('dispatch_notes', sa.Text),
        sa.Column('receipt_notes', sa.Text),
        user_fk('created_by'),
        user_fk('updated_by'),
        *_timestamps(),
        sa.CheckConstraint(
            'requesting_warehouse_id <> fulfilling_warehouse_id',
            name='ck_delivery_note_distinct_warehouses',
        ),
    )
    op.create_index('ix_delivery_notes_dn_number', 'delivery_notes', ['dn_number'])
    op.create_index('ix_delivery_notes_status', 'delivery_notes', ['status'])
    op.create_index('ix_delivery_notes_requesting_warehouse_id', 'delivery_notes', ['requesting_warehouse_id'])
    op.create_index('ix_delivery_notes_fulfilling_warehouse_id', 'delivery_notes', ['fulfilling_warehouse_id'])

    op.create_table(
        'delivery_note_sources',
        sa.Column('dn_id', UUID(as_uuid=True),
                  sa.ForeignKey('delivery_notes.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('sr_id', UUID(as_uuid=True), sa.ForeignKey('stock_requests.id'), primary_key=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_delivery_note_sources_sr_id', 'delivery_note_sources', ['sr_id'])

    op.create_table(
        'delivery_note_items',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('dn_id', UUID(as_uuid=True),
                  sa.ForeignKey('delivery_notes.id', ondelete='CASCADE'), nullable=False),
        sa.Column('line_number', sa.Integer, nullable=False, server_default='1'),
        sa.Column('sr_id', UUID(as_uuid=True), sa.ForeignKey('stock_requests.id'), nullable=False),
        sa.Column('sr_item_id', UUID(as_uuid=True), sa.ForeignKey('stock_request_items.id'), nullable=False),
        sa.Column('item_id', UUID(as_uuid=True), nullable=False),
        sa.Column('uom_id', UUID(as_uuid=True), nullable=False),
        sa.Column('allocated_qty', QTY, nullable=False),
        sa.Column('picked_qty', QTY, nullable=False, server_default='0'),
        sa.Column('short_qty', QTY, nullable=False, server_default='0'),
        sa.Column('dispatched_qty', QTY, nullable=False, server_default='0'),
        sa.Column('received_qty', QTY, nullable=False, server_default='0'),
        *_timestamps(),
        sa.UniqueConstraint('dn_id', 'sr_item_id', name='uq_delivery_note_item_sr_item'),
        sa.CheckConstraint(
            'allocated_qty >= 0 AND picked_qty >= 0 AND short_qty >= 0 '
            'AND dispatched_qty >= 0 AND received_qty >= 0',
            name='ck_dn_item_non_negative',
        ),
        sa.CheckConstraint('picked_qty <= allocated_qty', name='ck_dn_item_picked_le_allocated'),
        sa.CheckConstraint('dispatched_qty <= picked_qty', name='ck_dn_item_dispatched_le_picked'),
        sa.CheckConstraint('received_qty <= dispatched_qty', name='ck_dn_item_received_le_dispatched'),
        sa.CheckConstraint('short_qty = allocated_qty - picked_qty', name='ck_dn_item_short_derived'),
    )
    op.create_index('ix_delivery_note_items_dn_id', 'delivery_note_items', ['dn_id'])
    op.create_index('ix_delivery_note_items_sr_id', 'delivery_note_items', ['sr_id'])
    op.create_index('ix_delivery_note_items_sr_item_id', 'delivery_note_items', ['sr_item_id'])

    # ==================== pick lists ====================
    op.create_table(
        'pick_lists',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('pick_list_number', sa.String(50), nullable=False, unique=True),
        sa.Column('dn_id', UUID(as_uuid=True),
                  sa.ForeignKey('delivery_notes.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('status', sa.String(50), nullable=False, server_default='queued'),
        sa.Column('instructions', sa.Text),
        sa.Column('created_by', UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='SET NULL')),
        *_timestamps(updated_nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True)),
        sa.Column('completed_at', sa.DateTime(timezone=True)),
        sa.Column('cancelled_at', sa.DateTime(timezone=True)),
        sa.Column('cancellation_reason', sa.Text),
        sa.Column('deleted_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_pick_lists_pick_list_number', 'pick_lists', ['pick_list_number'])
    op.create_index('ix_pick_lists_dn_id', 'pick_lists', ['dn_id'])
    op.create_index('ix_pick_lists_status', 'pick_lists', ['status'])
    op.create_index('ix_pick_lists_created_at', 'pick_lists', ['created_at'])
    # At most one active pick list per delivery note
    op.create_index(
        'ux_pick_lists_active_per_dn',
        'pick_lists',
        ['dn_id'],
        unique=True,
        postgresql_where=sa.text("status <> 'cancelled' AND deleted_at IS NULL"),
    )

    op.create_table(
        'pick_list_assignees',
        sa.Column('pick_list_id', UUID(as_uuid=True),
                  sa.ForeignKey('pick_lists.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('user_id', UUID(as_uuid=True), sa.ForeignKey('users.id'), primary_key=True),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('assigned_by', UUID(as_uuid=True), sa.ForeignKey('users.id')),
    )
    op.create_index('ix_pick_list_assignees_user_id', 'pick_list_assignees', ['user_id'])

    op.create_table(
        'pick_list_items',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('pick_list_id', UUID(as_uuid=True),
                  sa.ForeignKey('pick_lists.id', ondelete='CASCADE'), nullable=False),
        sa.Column('dn_item_id', UUID(as_uuid=True), sa.ForeignKey('delivery_note_items.id'), nullable=False),
        sa.Column('sr_id', UUID(as_uuid=True), nullable=False),
        sa.Column('sr_item_id', UUID(as_uuid=True), nullable=False),
        sa.Column('item_id', UUID(as_uuid=True), nullable=False),
        sa.Column('uom_id', UUID(as_uuid=True), nullable=False),
        sa.Column('allocated_qty', QTY, nullable=False),
        sa.Column('picked_qty', QTY, nullable=False, server_default='0'),
        sa.Column('short_qty', QTY, nullable=False, server_default='0'),
        sa.Column('picked_by', UUID(as_uuid=True)),
        sa.Column('picked_at', sa.DateTime(timezone=True)),
        sa.UniqueConstraint('pick_list_id', 'dn_item_id', name='uq_pick_list_item_dn_item'),
        sa.CheckConstraint('picked_qty >= 0 AND short_qty >= 0', name='ck_pick_list_item_non_negative'),
        sa.CheckConstraint('picked_qty <= allocated_qty', name='ck_pick_list_item_picked_le_allocated'),
        sa.CheckConstraint('short_qty = allocated_qty - picked_qty', name='ck_pick_list_item_short_derived'),
    )
    op.create_index('ix_pick_list_items_pick_list_id', 'pick_list_items', ['pick_list_id'])

    # ==================== numbering ====================
    op.create_table(
        'document_sequences',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('document_type', sa.String(10), nullable=False),
        sa.Column('company_code', sa.String(10), nullable=False, server_default='WH'),
        sa.Column('financial_year', sa.String(10), nullable=False),
        sa.Column('current_number', sa.Integer, nullable=False, server_default='0'),
        sa.Column('padding_length', sa.Integer, server_default='5'),
        sa.Column('separator', sa.String(5), server_default='/'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()')),
        sa.UniqueConstraint('document_type', 'financial_year', name='uq_document_type_fy'),
    )
    op.create_index('ix_document_sequences_document_type', 'document_sequences', ['document_type'])

    print("Created fulfillment tables")


def downgrade() -> None:
    """Drop fulfillment tables."""
    for table in (
        'document_sequences',
        'pick_list_items',
        'pick_list_assignees',
        'pick_lists',
        'delivery_note_items',
        'delivery_note_sources',
        'delivery_notes',
        'stock_request_items',
        'stock_requests',
        'inventory_balances',
        'users',
        'warehouses',
        'business_units',
    ):
        op.drop_table(table)
