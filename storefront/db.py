"""
Storefront — データストア

イベントストアと各リードモデルのテーブル定義。
タイムスタンプは UTC の ISO-8601 文字列、ネストした構造 (配送先・追跡情報など)
は JSON 文字列として保存する。PostgreSQL と SQLite の両方で同じ SQL が動く。
"""

import json
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from .errors import StoreNotInitializedError

# 一括更新はこの件数ごとにコミットする。
BATCH_LIMIT = 500

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS event_store (
        aggregate_id TEXT NOT NULL,
        aggregate_type TEXT NOT NULL,
        event_type TEXT NOT NULL,
        event_data TEXT NOT NULL,
        version INTEGER NOT NULL,
        created_at TEXT NOT NULL,
        PRIMARY KEY (aggregate_id, version)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS product_stock (
        product_id TEXT PRIMARY KEY,
        stock_count INTEGER NOT NULL DEFAULT 0,
        reserved_stock INTEGER NOT NULL DEFAULT 0,
        last_updated TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS store_orders (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        user_email TEXT NOT NULL,
        user_name TEXT NOT NULL,
        product_id TEXT NOT NULL,
        product_name TEXT NOT NULL,
        quantity INTEGER NOT NULL,
        total_amount DOUBLE PRECISION NOT NULL,
        status TEXT NOT NULL,
        payment_status TEXT NOT NULL,
        refund_status TEXT NOT NULL DEFAULT 'none',
        refund_reason TEXT,
        refund_amount DOUBLE PRECISION,
        refund_request_date TEXT,
        refund_approved_date TEXT,
        refund_approved_by TEXT,
        refund_processed_date TEXT,
        refund_processed_by TEXT,
        refund_rejection_reason TEXT,
        payment_intent_id TEXT,
        items TEXT,
        shipping_info TEXT,
        tracking_info TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notifications (
        id TEXT PRIMARY KEY,
        app_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        type TEXT NOT NULL,
        title TEXT NOT NULL,
        message TEXT NOT NULL,
        order_id TEXT,
        product_name TEXT,
        amount DOUBLE PRECISION,
        priority TEXT NOT NULL,
        read BOOLEAN NOT NULL DEFAULT FALSE,
        read_at TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_profiles (
        uid TEXT PRIMARY KEY,
        email TEXT NOT NULL,
        display_name TEXT,
        roles TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS email_subscribers (
        id TEXT PRIMARY KEY,
        email TEXT NOT NULL UNIQUE,
        source TEXT NOT NULL,
        status TEXT NOT NULL,
        discount_code_sent BOOLEAN NOT NULL DEFAULT FALSE,
        cart_reminder_sent BOOLEAN NOT NULL DEFAULT FALSE,
        abandonment_email_sent BOOLEAN NOT NULL DEFAULT FALSE,
        cart_items TEXT NOT NULL,
        purchase_history TEXT NOT NULL,
        tags TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS email_campaigns (
        id TEXT PRIMARY KEY,
        type TEXT NOT NULL,
        subject TEXT NOT NULL,
        content TEXT NOT NULL,
        discount_code TEXT,
        discount_percentage INTEGER,
        status TEXT NOT NULL,
        recipients TEXT NOT NULL,
        sent_count INTEGER NOT NULL,
        success_count INTEGER NOT NULL,
        fail_count INTEGER NOT NULL,
        sent_at TEXT NOT NULL
    )
    """,
]


async def create_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        for statement in SCHEMA:
            await conn.execute(text(statement))


def ensure_session(session: AsyncSession | None) -> AsyncSession:
    if session is None:
        raise StoreNotInitializedError()
    return session


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """DB から読んだタイムスタンプを datetime に揃える。"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def dump_json(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, default=str)


def load_json(value: Any, default: Any = None) -> Any:
    if value is None:
        return default
    if isinstance(value, str):
        return json.loads(value)
    return value


def chunked(items: list, size: int = BATCH_LIMIT) -> list[list]:
    return [items[i : i + size] for i in range(0, len(items), size)]
