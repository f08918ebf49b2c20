"""Initial migration - reservation engine tables

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

Creates:
- products: stock per product (total and maintenance units only)
- bookings / booking_line_items: the booking aggregate
- reservation_windows: inclusive date claims counted by availability
- order_sequences: one atomic counter row per month scope

All statements use IF NOT EXISTS and plain types so the same migration
runs on PostgreSQL and SQLite.
"""
from typing import Sequence, Union

from alembic import op
from sqlalchemy import text

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables if they don't exist"""

    op.execute(text("""
        CREATE TABLE IF NOT EXISTS products (
            id VARCHAR(36) PRIMARY KEY,
            sku VARCHAR(100) NOT NULL UNIQUE,
            name VARCHAR(200) NOT NULL,
            total_quantity INTEGER NOT NULL DEFAULT 0,
            maintenance_quantity INTEGER NOT NULL DEFAULT 0,
            base_rate NUMERIC(10, 2) NOT NULL DEFAULT 0,
            min_duration INTEGER NOT NULL DEFAULT 1,
            max_duration INTEGER,
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            is_rentable BOOLEAN NOT NULL DEFAULT TRUE,
            lock_version INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            CONSTRAINT ck_product_total_non_negative CHECK (total_quantity >= 0),
            CONSTRAINT ck_product_maintenance_non_negative CHECK (maintenance_quantity >= 0),
            CONSTRAINT ck_product_maintenance_le_total CHECK (maintenance_quantity <= total_quantity)
        )
    """))

    op.execute(text("""
        CREATE TABLE IF NOT EXISTS bookings (
            id VARCHAR(36) PRIMARY KEY,
            order_number VARCHAR(50) NOT NULL UNIQUE,
            customer_id VARCHAR(36) NOT NULL,
            start_date DATE NOT NULL,
            end_date DATE NOT NULL,
            actual_pickup_date DATE,
            actual_return_date DATE,
            status VARCHAR(20) NOT NULL DEFAULT 'confirmed',
            subtotal NUMERIC(12, 2) NOT NULL DEFAULT 0,
            tax_amount NUMERIC(12, 2) NOT NULL DEFAULT 0,
            total_amount NUMERIC(12, 2) NOT NULL DEFAULT 0,
            notes TEXT,
            cancellation_reason TEXT,
            cancelled_at TIMESTAMP,
            lock_version INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """))
    op.execute(text("CREATE INDEX IF NOT EXISTS ix_booking_customer ON bookings(customer_id)"))
    op.execute(text("CREATE INDEX IF NOT EXISTS ix_booking_status ON bookings(status)"))
    op.execute(text("CREATE INDEX IF NOT EXISTS ix_booking_dates ON bookings(start_date, end_date)"))

    op.execute(text("""
        CREATE TABLE IF NOT EXISTS booking_line_items (
            id VARCHAR(36) PRIMARY KEY,
            booking_id VARCHAR(36) NOT NULL REFERENCES bookings(id) ON DELETE CASCADE,
            product_id VARCHAR(36) NOT NULL REFERENCES products(id) ON DELETE RESTRICT,
            position INTEGER NOT NULL DEFAULT 0,
            quantity INTEGER NOT NULL,
            unit_rate NUMERIC(10, 2) NOT NULL,
            duration_days INTEGER NOT NULL,
            line_total NUMERIC(12, 2) NOT NULL,
            CONSTRAINT ck_line_item_quantity_positive CHECK (quantity > 0)
        )
    """))
    op.execute(text("CREATE INDEX IF NOT EXISTS ix_line_item_booking ON booking_line_items(booking_id)"))
    op.execute(text("CREATE INDEX IF NOT EXISTS ix_line_item_product ON booking_line_items(product_id)"))

    op.execute(text("""
        CREATE TABLE IF NOT EXISTS reservation_windows (
            id VARCHAR(36) PRIMARY KEY,
            product_id VARCHAR(36) NOT NULL REFERENCES products(id) ON DELETE RESTRICT,
            booking_id VARCHAR(36) NOT NULL REFERENCES bookings(id) ON DELETE CASCADE,
            line_item_id VARCHAR(36) REFERENCES booking_line_items(id) ON DELETE CASCADE,
            start_date DATE NOT NULL,
            end_date DATE NOT NULL,
            quantity INTEGER NOT NULL,
            status VARCHAR(20) NOT NULL DEFAULT 'active',
            released_at TIMESTAMP,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            CONSTRAINT ck_window_quantity_positive CHECK (quantity > 0),
            CONSTRAINT ck_window_dates_ordered CHECK (start_date <= end_date)
        )
    """))
    # Availability scans filter on product + status, then range-compare dates
    op.execute(text("""
        CREATE INDEX IF NOT EXISTS ix_window_product_status_dates
        ON reservation_windows(product_id, status, start_date, end_date)
    """))
    op.execute(text("CREATE INDEX IF NOT EXISTS ix_window_booking ON reservation_windows(booking_id)"))

    op.execute(text("""
        CREATE TABLE IF NOT EXISTS order_sequences (
            scope_key VARCHAR(6) PRIMARY KEY,
            last_value INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """))


def downgrade() -> None:
    """Drop all tables (children first)"""
    op.execute(text("DROP TABLE IF EXISTS reservation_windows"))
    op.execute(text("DROP TABLE IF EXISTS booking_line_items"))
    op.execute(text("DROP TABLE IF EXISTS bookings"))
    op.execute(text("DROP TABLE IF EXISTS order_sequences"))
    op.execute(text("DROP TABLE IF EXISTS products"))
