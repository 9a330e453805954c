"""Database connection pool and schema initialization."""

from src.shared.db.connection import ConnectionPool
from src.shared.db.schema import SCHEMA_VERSION, init_cmdb_db, init_inventory_db

__all__ = [
    "ConnectionPool",
    "SCHEMA_VERSION",
    "init_cmdb_db",
    "init_inventory_db",
]
