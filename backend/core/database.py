"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support (sqlite in-memory)
- Table definitions for users, plans, subscriptions, usage, audit and discounts
"""
import logging
import os
from datetime import datetime
from typing import Any, Dict, Optional, Generator
from contextlib import contextmanager
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Boolean, JSON, Text, Float, Index, ForeignKey, text, true, false
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.sql import func

from backend.core.clock import ensure_utc
from backend.core.config import settings

logger = logging.getLogger("subtrack")

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine and session factory
_engine = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return settings.DATABASE_URL


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if url.startswith("sqlite"):
        # One shared connection so an in-memory database survives across sessions
        _engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=False,
        )
    else:
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            echo=False,  # Set to True for SQL query logging
        )

    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session():
    """
    Context manager for database sessions.

    Usage:
        with get_db_session() as session:
            session.execute(...)

    Commits on clean exit, rolls back on error. Do not open a second
    session inside the block; audit and notification writes happen after it.
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Generator[Session, None, None]:
    """FastAPI-friendly DB dependency that yields a Session and closes it."""
    SessionLocal = get_session_factory()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_all_tables():
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    engine = get_engine()
    metadata.create_all(bind=engine)


def drop_all_tables():
    """
    Drop all tables defined in metadata.

    WARNING: This is destructive! Only use in tests or development.
    """
    engine = get_engine()
    metadata.drop_all(bind=engine)


def reset_database():
    """
    Reset the database by dropping and recreating all tables.

    WARNING: This is destructive! Only use in tests.
    """
    drop_all_tables()
    create_all_tables()


def clear_all_tables():
    """Delete every row while keeping the schema (children first)."""
    engine = get_engine()
    with engine.begin() as conn:
        for table in reversed(metadata.sorted_tables):
            conn.execute(table.delete())


def row_to_dict(row) -> Dict[str, Any]:
    """Row mapping as a dict with datetimes normalized to UTC (sqlite drops tzinfo)."""
    data = dict(row._mapping)
    for key, value in data.items():
        if isinstance(value, datetime):
            data[key] = ensure_utc(value)
    return data


def check_connection() -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database connection check failed: {e}")
        return False


# Users table
users = Table(
    'app_users',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('username', String(100), nullable=True),
    Column('email', String(255), nullable=True),
    Column('first_name', String(100), nullable=True),
    Column('last_name', String(100), nullable=True),
    Column('role', String(20), nullable=False, server_default='user'),  # 'user' | 'admin'
    Column('is_active', Boolean, nullable=False, server_default=true()),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('last_login', DateTime(timezone=True), nullable=True),
    Index('idx_users_created_at', 'created_at'),
    Index('idx_users_role', 'role'),
)

# Plan catalog
plans = Table(
    'plans',
    metadata,
    Column('plan_id', String(50), primary_key=True),
    Column('name', String(200), nullable=False, unique=True),
    Column('description', Text, nullable=True),
    Column('product_type', String(50), nullable=False),  # 'Fibernet' | 'BroadbandCopper'
    Column('price', Float, nullable=False),
    Column('quota', Float, nullable=False),  # GB
    Column('download_speed', Float, nullable=False),  # Mbps
    Column('upload_speed', Float, nullable=False),  # Mbps
    Column('features', JSON, nullable=True),
    Column('is_active', Boolean, nullable=False, server_default=true()),
    Column('billing_cycle', String(20), nullable=False, server_default='monthly'),
    Column('max_users', Integer, nullable=False, server_default='1'),
    Column('setup_fee', Float, nullable=False, server_default='0'),
    Column('contract_length', Integer, nullable=False, server_default='12'),  # months
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_plans_product_type_active', 'product_type', 'is_active'),
    Index('idx_plans_price', 'price'),
)

# Subscriptions
subscriptions = Table(
    'subscriptions',
    metadata,
    Column('subscription_id', String(50), primary_key=True),
    Column('user_id', String(100), ForeignKey('app_users.user_id'), nullable=False),
    Column('plan_id', String(50), ForeignKey('plans.plan_id'), nullable=False),
    Column('status', String(20), nullable=False, server_default='pending'),
    Column('start_date', DateTime(timezone=True), nullable=False),
    Column('end_date', DateTime(timezone=True), nullable=False),
    Column('next_billing_date', DateTime(timezone=True), nullable=True),
    Column('auto_renew', Boolean, nullable=False, server_default=true()),
    Column('payment_method', String(30), nullable=False, server_default='credit_card'),
    Column('last_payment_date', DateTime(timezone=True), nullable=True),
    Column('next_payment_amount', Float, nullable=True),
    Column('discount_id', String(50), nullable=True),
    Column('total_paid', Float, nullable=False, server_default='0'),
    Column('cancellation_reason', Text, nullable=True),
    Column('cancelled_at', DateTime(timezone=True), nullable=True),
    Column('notes', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_subscriptions_user_status', 'user_id', 'status'),
    Index('idx_subscriptions_plan_status', 'plan_id', 'status'),
    Index('idx_subscriptions_created_at', 'created_at'),
)

# Daily usage records
usage_records = Table(
    'usage_records',
    metadata,
    Column('record_id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), ForeignKey('app_users.user_id'), nullable=False),
    Column('subscription_id', String(50), ForeignKey('subscriptions.subscription_id'), nullable=False),
    Column('date', DateTime(timezone=True), nullable=False),
    Column('data_used', Float, nullable=False),  # GB
    Column('data_downloaded', Float, nullable=False, server_default='0'),
    Column('data_uploaded', Float, nullable=False, server_default='0'),
    Column('average_speed', Float, nullable=True),  # Mbps; missing counts as 0 in aggregates
    Column('peak_speed', Float, nullable=True),
    Column('latency', Float, nullable=True),
    Column('packet_loss', Float, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_usage_records_user_date', 'user_id', 'date'),
    Index('idx_usage_records_subscription_date', 'subscription_id', 'date'),
)

# Audit log
audit_logs = Table(
    'audit_logs',
    metadata,
    Column('log_id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=True),
    Column('action', String(100), nullable=False),
    Column('resource', String(50), nullable=False),
    Column('resource_id', String(100), nullable=True),
    Column('details', JSON, nullable=True),
    Column('old_values', JSON, nullable=True),
    Column('new_values', JSON, nullable=True),
    Column('ip_address', String(64), nullable=True),
    Column('user_agent', Text, nullable=True),
    Column('severity', String(20), nullable=False, server_default='low'),
    Column('category', String(30), nullable=False, server_default='data_access'),
    Column('request_id', String(100), nullable=True),
    Column('timestamp', DateTime(timezone=True), nullable=False),
    Index('idx_audit_logs_user_timestamp', 'user_id', 'timestamp'),
    Index('idx_audit_logs_resource', 'resource', 'resource_id'),
    Index('idx_audit_logs_category_severity', 'category', 'severity'),
)

# Discount codes
discounts = Table(
    'discounts',
    metadata,
    Column('discount_id', String(50), primary_key=True),
    Column('name', String(200), nullable=False),
    Column('description', Text, nullable=True),
    Column('code', String(50), nullable=False, unique=True),
    Column('type', String(20), nullable=False),  # 'percentage' | 'fixed_amount'
    Column('value', Float, nullable=False),
    Column('max_discount_amount', Float, nullable=True),
    Column('min_order_amount', Float, nullable=False, server_default='0'),
    Column('applicable_plans', JSON, nullable=True),
    Column('applicable_product_types', JSON, nullable=True),
    Column('conditions', JSON, nullable=True),
    Column('start_date', DateTime(timezone=True), nullable=False),
    Column('end_date', DateTime(timezone=True), nullable=False),
    Column('usage_limit', Integer, nullable=True),  # NULL = unlimited
    Column('used_count', Integer, nullable=False, server_default='0'),
    Column('is_active', Boolean, nullable=False, server_default=true()),
    Column('is_public', Boolean, nullable=False, server_default=false()),
    Column('created_by', String(100), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_discounts_active_dates', 'is_active', 'start_date', 'end_date'),
)

# Discount redemptions
discount_usages = Table(
    'discount_usages',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('discount_id', String(50), ForeignKey('discounts.discount_id'), nullable=False),
    Column('user_id', String(100), nullable=False),
    Column('subscription_id', String(50), nullable=True),
    Column('code', String(50), nullable=False),
    Column('amount_before', Float, nullable=False),
    Column('discount_amount', Float, nullable=False),
    Column('amount_after', Float, nullable=False),
    Column('applied_at', DateTime(timezone=True), nullable=False),
    Index('idx_discount_usages_discount_applied', 'discount_id', 'applied_at'),
)
