"""Pytest fixtures for retention engine testing.

Provides reusable test fixtures for:
- File-backed SQLite store shared by worker threads
- Seeded orders / order_items / customers / shipments tables
- Backup tables and the retention task log table
- A retention configuration covering cascades and backups

Usage:
    def test_something(store, configuration):
        service = RetentionService(store, configuration)
        result = service.analyze("pytest")
"""

import sys
from pathlib import Path
from typing import Generator

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

backend_src = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(backend_src))

from models.base import Base
from models.backup_record import build_backup_table, ensure_backup_tables
from retention.schemas import (
    BackupConfig,
    Criterion,
    DistributionSettings,
    EntityConfig,
    RelatedEntityConfig,
    RetentionConfiguration,
)


STORE_DDL = [
    """
    CREATE TABLE orders (
        id TEXT PRIMARY KEY,
        customer_id TEXT NOT NULL,
        status TEXT NOT NULL,
        total REAL NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE order_items (
        id INTEGER PRIMARY KEY,
        order_id TEXT NOT NULL,
        sku TEXT NOT NULL,
        quantity INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE customers (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        active INTEGER NOT NULL,
        last_login TEXT
    )
    """,
    """
    CREATE TABLE shipments (
        id TEXT PRIMARY KEY,
        order_id TEXT NOT NULL,
        status TEXT NOT NULL
    )
    """,
]

ORDERS = [
    {"id": "o1", "customer_id": "c1", "status": "CANCELLED", "total": 10.5, "created_at": "2024-01-01"},
    {"id": "o2", "customer_id": "c1", "status": "CANCELLED", "total": 250.0, "created_at": "2024-01-02"},
    {"id": "o3", "customer_id": "c2", "status": "CANCELLED", "total": 99.0, "created_at": "2024-01-03"},
    {"id": "o4", "customer_id": "c3", "status": "SHIPPED", "total": 40.0, "created_at": "2024-02-01"},
    {"id": "o5", "customer_id": "c4", "status": "PENDING", "total": 500.0, "created_at": "2024-02-02"},
]

ORDER_ITEMS = [
    {"id": 1, "order_id": "o1", "sku": "SKU-A", "quantity": 1},
    {"id": 2, "order_id": "o1", "sku": "SKU-B", "quantity": 2},
    {"id": 3, "order_id": "o2", "sku": "SKU-A", "quantity": 5},
    {"id": 4, "order_id": "o4", "sku": "SKU-A", "quantity": 1},
    {"id": 5, "order_id": "o4", "sku": "SKU-C", "quantity": 3},
]

CUSTOMERS = [
    {"id": "c1", "name": "Ada", "active": 0, "last_login": "2020-05-01"},
    {"id": "c2", "name": "Grace", "active": 0, "last_login": "2021-03-12"},
    {"id": "c3", "name": "Linus", "active": 1, "last_login": "2024-06-30"},
    {"id": "c4", "name": "Barbara", "active": 1, "last_login": "2024-07-01"},
]

SHIPMENTS = [
    {"id": "s1", "order_id": "o4", "status": "DELIVERED"},
    {"id": "s2", "order_id": "o5", "status": "DELIVERED"},
    {"id": "s3", "order_id": "o5", "status": "IN_TRANSIT"},
]

BACKUP_TABLES = ["orders_backup", "customers_backup", "shipments_backup"]


def count_rows(engine: Engine, table: str, where: str = "1=1") -> int:
    """Count rows of a table in a fresh connection."""
    with engine.connect() as conn:
        return conn.execute(text(f"SELECT COUNT(*) FROM {table} WHERE {where}")).scalar_one()


def fetch_ids(engine: Engine, table: str) -> list:
    with engine.connect() as conn:
        return list(conn.execute(text(f"SELECT id FROM {table} ORDER BY id")).scalars())


@pytest.fixture(scope="function")
def engine(tmp_path) -> Generator[Engine, None, None]:
    """SQLite engine on a temporary file.

    A file (not :memory:) so every pooled connection, including those opened
    by worker threads, sees the same database.
    """
    test_engine = create_engine(
        f"sqlite:///{tmp_path / 'retention.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    try:
        yield test_engine
    finally:
        test_engine.dispose()


@pytest.fixture(scope="function")
def store(engine) -> Engine:
    """Engine with seeded entity tables, backup tables and the task log table."""
    with engine.begin() as conn:
        for ddl in STORE_DDL:
            conn.execute(text(ddl))
        conn.execute(
            text("INSERT INTO orders VALUES (:id, :customer_id, :status, :total, :created_at)"),
            ORDERS,
        )
        conn.execute(
            text("INSERT INTO order_items VALUES (:id, :order_id, :sku, :quantity)"),
            ORDER_ITEMS,
        )
        conn.execute(
            text("INSERT INTO customers VALUES (:id, :name, :active, :last_login)"),
            CUSTOMERS,
        )
        conn.execute(
            text("INSERT INTO shipments VALUES (:id, :order_id, :status)"),
            SHIPMENTS,
        )

    ensure_backup_tables(engine, [build_backup_table(name) for name in BACKUP_TABLES])
    Base.metadata.create_all(bind=engine)
    return engine


def order_entity(**overrides) -> EntityConfig:
    """Order entity: cancelled orders, cascading into order_items, backed up."""
    values = dict(
        name="Order",
        table="orders",
        criteria=(Criterion(field="status", condition="= 'CANCELLED'"),),
        related=(
            RelatedEntityConfig(
                entity="OrderItem",
                table="order_items",
                join="id",
                foreign_key="order_id",
                cascade_delete=True,
            ),
        ),
        backup=BackupConfig(enabled=True, table="orders_backup"),
    )
    values.update(overrides)
    return EntityConfig(**values)


def customer_entity(**overrides) -> EntityConfig:
    values = dict(
        name="Customer",
        table="customers",
        criteria=(Criterion(field="active", condition="= 0"),),
        backup=BackupConfig(enabled=True, table="customers_backup"),
    )
    values.update(overrides)
    return EntityConfig(**values)


def shipment_entity(**overrides) -> EntityConfig:
    values = dict(
        name="Shipment",
        table="shipments",
        criteria=(Criterion(field="status", condition="= 'DELIVERED'"),),
        backup=BackupConfig(enabled=True, table="shipments_backup"),
    )
    values.update(overrides)
    return EntityConfig(**values)


def make_configuration(*entities: EntityConfig, worker_count: int = 1, batch_size: int = 1000, **extra):
    return RetentionConfiguration(
        entities=entities,
        distribution=DistributionSettings(worker_count=worker_count, batch_size=batch_size),
        **extra,
    )


@pytest.fixture
def configuration() -> RetentionConfiguration:
    """Sequential configuration over Order, Customer and Shipment."""
    return make_configuration(order_entity(), customer_entity(), shipment_entity())
