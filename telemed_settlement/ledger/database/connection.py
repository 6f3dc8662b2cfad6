"""Database connection manager for SQLite."""

import sqlite3

from telemed_settlement.config import DB_PATH, DEFAULT_PLATFORM_SETTINGS

from .schema import SCHEMA, SEED_SETTINGS


def get_connection() -> sqlite3.Connection:
    """Get a database connection with row factory enabled."""
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_database() -> None:
    """Initialize the database with schema and the platform settings row."""
    conn = get_connection()
    conn.executescript(SCHEMA)
    conn.execute(SEED_SETTINGS, DEFAULT_PLATFORM_SETTINGS)
    conn.commit()
    conn.close()
