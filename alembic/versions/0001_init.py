from alembic import op
import sqlalchemy as sa

revision = '0001_init'
down_revision = None
branch_labels = None
depends_on = None

UNIT_STATUS = sa.Enum(
    'IN_STOCK', 'RENTED', 'MAINTENANCE', 'RETIRED',
    name='unitstatus', native_enum=False, length=20
)

def upgrade():
    op.create_table(
        'categories',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('item_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime, nullable=False)
    )
    op.create_index('ix_categories_name', 'categories', ['name'], unique=True)

    op.create_table(
        'items',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('category_id', sa.Integer, sa.ForeignKey('categories.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('model', sa.String(200), nullable=False),
        sa.Column('location', sa.String(200), nullable=True),
        sa.Column('quantity_in_stock', sa.Integer, nullable=False, server_default='0'),
        sa.Column('quantity_rented_out', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=True)
    )
    op.create_index('ix_items_category_id', 'items', ['category_id'])

    op.create_table(
        'units',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('item_id', sa.Integer, sa.ForeignKey('items.id', ondelete='CASCADE'), nullable=False),
        sa.Column('serial_number', sa.String(64), nullable=False),
        sa.Column('barcode', sa.String(32), nullable=False),
        sa.Column('status', UNIT_STATUS, nullable=False, server_default='IN_STOCK'),
        sa.Column('location', sa.String(200), nullable=True),
        sa.Column('warranty_expiry', sa.Date, nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('consumer_ref', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('updated_at', sa.DateTime, nullable=True)
    )
    op.create_index('ix_units_item_id', 'units', ['item_id'])
    op.create_index('ix_units_serial_number', 'units', ['serial_number'], unique=True)
    op.create_index('ix_units_barcode', 'units', ['barcode'], unique=True)
    op.create_index('ix_units_status', 'units', ['status'])
    op.create_index('ix_units_consumer_ref', 'units', ['consumer_ref'])

    op.create_table(
        'allocations',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('item_id', sa.Integer, sa.ForeignKey('items.id', ondelete='CASCADE'), nullable=False),
        sa.Column('consumer_ref', sa.String(100), nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False),
        sa.Column('released_at', sa.DateTime, nullable=True)
    )
    op.create_index('ix_allocations_item_id', 'allocations', ['item_id'])
    op.create_index('ix_allocations_consumer_ref', 'allocations', ['consumer_ref'])

    op.create_table(
        'allocation_units',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('allocation_id', sa.Integer, sa.ForeignKey('allocations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('unit_id', sa.Integer, sa.ForeignKey('units.id', ondelete='SET NULL'), nullable=True),
        sa.Column('serial_number', sa.String(64), nullable=False),
        sa.Column('released_at', sa.DateTime, nullable=True)
    )
    op.create_index('ix_allocation_units_allocation_id', 'allocation_units', ['allocation_id'])
    # A unit sits in at most one open allocation line
    op.create_index(
        'uq_allocation_units_active_unit',
        'allocation_units',
        ['unit_id'],
        unique=True,
        sqlite_where=sa.text('released_at IS NULL'),
        postgresql_where=sa.text('released_at IS NULL')
    )

def downgrade():
    op.drop_index('uq_allocation_units_active_unit', table_name='allocation_units')
    op.drop_table('allocation_units')
    op.drop_table('allocations')
    op.drop_table('units')
    op.drop_table('items')
    op.drop_table('categories')
