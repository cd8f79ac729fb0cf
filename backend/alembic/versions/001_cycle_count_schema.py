"""Cycle count schema

Revision ID: 001
Revises:
Create Date: 2025-03-02

Adds:
- warehouses, stock_items, stock_levels, stock_batches, stock_movements
- cycle_counts and cycle_count_items
- audit_log_entries
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

CYCLE_COUNT_TYPES = ("FULL", "ABC_CLASS_A", "ABC_CLASS_B", "ABC_CLASS_C", "RANDOM", "SPOT")
CYCLE_COUNT_STATUSES = (
    "DRAFT", "SCHEDULED", "IN_PROGRESS", "PENDING_REVIEW", "COMPLETED", "CANCELLED",
)


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'warehouses',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('code', sa.String(20), nullable=True, unique=True),
        sa.Column('active', sa.Boolean(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'stock_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('sku', sa.String(50), nullable=True, unique=True),
        sa.Column('category', sa.String(100), nullable=True, index=True),
        sa.Column('unit', sa.String(20), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'stock_levels',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('stock_item_id', sa.Integer(),
                  sa.ForeignKey('stock_items.id', ondelete='CASCADE'),
                  nullable=False, index=True),
        sa.Column('warehouse_id', sa.Integer(),
                  sa.ForeignKey('warehouses.id', ondelete='CASCADE'),
                  nullable=False, index=True),
        sa.Column('quantity', sa.Numeric(12, 3), nullable=False),
        sa.Column('average_cost', sa.Numeric(12, 4), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('stock_item_id', 'warehouse_id', name='uq_stock_level_item_warehouse'),
    )

    op.create_table(
        'stock_batches',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('stock_item_id', sa.Integer(),
                  sa.ForeignKey('stock_items.id', ondelete='CASCADE'),
                  nullable=False, index=True),
        sa.Column('warehouse_id', sa.Integer(),
                  sa.ForeignKey('warehouses.id', ondelete='CASCADE'),
                  nullable=False, index=True),
        sa.Column('batch_number', sa.String(50), nullable=False),
        sa.Column('quantity', sa.Numeric(12, 3), nullable=False),
        sa.Column('unit_cost', sa.Numeric(12, 4), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('ts', sa.DateTime(timezone=True), server_default=sa.func.now(),
                  nullable=False, index=True),
        sa.Column('stock_item_id', sa.Integer(),
                  sa.ForeignKey('stock_items.id', ondelete='CASCADE'),
                  nullable=False, index=True),
        sa.Column('warehouse_id', sa.Integer(),
                  sa.ForeignKey('warehouses.id', ondelete='CASCADE'),
                  nullable=False, index=True),
        sa.Column('batch_id', sa.Integer(),
                  sa.ForeignKey('stock_batches.id', ondelete='SET NULL'), nullable=True),
        sa.Column('qty_delta', sa.Numeric(12, 3), nullable=False),
        sa.Column('reason', sa.String(50), nullable=False),
        sa.Column('ref_type', sa.String(50), nullable=True),
        sa.Column('ref_id', sa.Integer(), nullable=True, index=True),
        sa.Column('notes', sa.String(500), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
    )

    op.create_table(
        'cycle_counts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('count_number', sa.String(30), nullable=False, unique=True),
        sa.Column('warehouse_id', sa.Integer(),
                  sa.ForeignKey('warehouses.id', ondelete='RESTRICT'),
                  nullable=False, index=True),
        sa.Column('type', sa.Enum(*CYCLE_COUNT_TYPES, name='cyclecounttype'), nullable=False),
        sa.Column('status', sa.Enum(*CYCLE_COUNT_STATUSES, name='cyclecountstatus'),
                  nullable=False, index=True),
        sa.Column('blind_count', sa.Boolean(), nullable=False),
        sa.Column('scheduled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('approved_by', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('total_items', sa.Integer(), nullable=False),
        sa.Column('items_counted', sa.Integer(), nullable=False),
        sa.Column('items_with_variance', sa.Integer(), nullable=False),
        sa.Column('total_variance_cost', sa.Numeric(14, 2), nullable=False),
        sa.Column('accuracy_percent', sa.Numeric(5, 2), nullable=True),
        sa.Column('version', sa.Integer(), server_default='1', nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'cycle_count_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('cycle_count_id', sa.Integer(),
                  sa.ForeignKey('cycle_counts.id', ondelete='CASCADE'),
                  nullable=False, index=True),
        sa.Column('stock_item_id', sa.Integer(),
                  sa.ForeignKey('stock_items.id', ondelete='RESTRICT'),
                  nullable=False, index=True),
        sa.Column('batch_id', sa.Integer(),
                  sa.ForeignKey('stock_batches.id', ondelete='SET NULL'), nullable=True),
        # Snapshot, locked at start
        sa.Column('system_quantity', sa.Numeric(12, 3), nullable=True),
        sa.Column('unit_cost', sa.Numeric(12, 4), nullable=True),
        sa.Column('counted_quantity', sa.Numeric(12, 3), nullable=True),
        sa.Column('variance', sa.Numeric(12, 3), nullable=True),
        sa.Column('variance_percent', sa.Numeric(9, 2), nullable=True),
        sa.Column('variance_cost', sa.Numeric(14, 2), nullable=True),
        sa.Column('counted_by', sa.Integer(), nullable=True),
        sa.Column('counted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.String(500), nullable=True),
        sa.Column('adjustment_made', sa.Boolean(), nullable=False),
        sa.Column('adjustment_id', sa.Integer(),
                  sa.ForeignKey('stock_movements.id', ondelete='SET NULL'), nullable=True),
        sa.UniqueConstraint('cycle_count_id', 'stock_item_id', 'batch_id',
                            name='uq_cycle_count_item_batch'),
    )

    op.create_table(
        'audit_log_entries',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('user_id', sa.Integer(), nullable=True, index=True),
        sa.Column('user_name', sa.String(200), nullable=True),
        sa.Column('action', sa.String(50), nullable=False, index=True),
        sa.Column('entity_type', sa.String(50), nullable=True, index=True),
        sa.Column('entity_id', sa.String(50), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(50), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True, index=True),
    )


def downgrade() -> None:
    op.drop_table('audit_log_entries')
    op.drop_table('cycle_count_items')
    op.drop_table('cycle_counts')
    op.drop_table('stock_movements')
    op.drop_table('stock_batches')
    op.drop_table('stock_levels')
    op.drop_table('stock_items')
    op.drop_table('warehouses')
    sa.Enum(name='cyclecountstatus').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='cyclecounttype').drop(op.get_bind(), checkfirst=True)
