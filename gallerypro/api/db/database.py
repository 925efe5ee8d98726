import os
import logging
from pathlib import Path
import aiosqlite
from typing import Optional

logger = logging.getLogger(__name__)

# Global database connection
_db: Optional[aiosqlite.Connection] = None

async def get_db() -> aiosqlite.Connection:
    """Get database connection"""
    global _db
    if _db is None:
        await init_db()
    return _db

async def init_db() -> None:
    """Initialize database with schema"""
    global _db

    db_path = Path(os.getenv("DB_PATH", "/data/db/gallerypro.db"))
    db_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        _db = await aiosqlite.connect(
            str(db_path),
            timeout=30.0,
        )
        _db.row_factory = aiosqlite.Row

        await _db.execute("PRAGMA journal_mode = WAL")

        await create_tables()

        logger.info(f"Database initialized at {db_path}")

    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

async def close_db() -> None:
    """Close database connection"""
    global _db
    if _db:
        await _db.close()
        _db = None
        logger.info("Database connection closed")

async def create_tables() -> None:
    """Create all database tables"""

    # One rules document per shop
    await _db.execute("""
        CREATE TABLE IF NOT EXISTS gp_shop_rules (
            shop TEXT PRIMARY KEY,
            payload_json TEXT NOT NULL,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)

    # Per-product rule overrides
    await _db.execute("""
        CREATE TABLE IF NOT EXISTS gp_product_overrides (
            shop TEXT NOT NULL,
            product_id TEXT NOT NULL,
            payload_json TEXT NOT NULL,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (shop, product_id)
        )
    """)

    # Variant image maps
    await _db.execute("""
        CREATE TABLE IF NOT EXISTS gp_variant_mappings (
            shop TEXT NOT NULL,
            product_id TEXT NOT NULL,
            payload_json TEXT NOT NULL,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (shop, product_id)
        )
    """)

    await _db.execute("CREATE INDEX IF NOT EXISTS idx_overrides_shop ON gp_product_overrides(shop)")
    await _db.execute("CREATE INDEX IF NOT EXISTS idx_mappings_shop ON gp_variant_mappings(shop)")

    await _db.commit()
