"""
Storefront — 設定

環境変数から一度だけ読み込み、Settings としてアプリに渡す。
"""

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    database_url: str
    redis_url: str
    payment_service_url: str
    email_service_url: str
    frontend_url: str
    app_id: str
    default_stock_count: int = 15
    notification_cache_ttl: float = 300.0
    from_email: str = "info@quibble.online"
    from_name: str = "Quibble Wellness Store"
    log_level: str = "INFO"
    # inline: ルートの中で通知を作る / subscriber: order_events の購読タスクで作る
    notification_mode: str = "inline"


def load_settings() -> Settings:
    return Settings(
        database_url=os.environ.get(
            "DATABASE_URL", "sqlite+aiosqlite:///./storefront.db"
        ),
        redis_url=os.environ.get("REDIS_URL", "redis://localhost:6379"),
        payment_service_url=os.environ.get(
            "PAYMENT_SERVICE_URL", "http://localhost:4242/api"
        ),
        email_service_url=os.environ.get(
            "EMAIL_SERVICE_URL", "http://localhost:4242/api"
        ),
        frontend_url=os.environ.get("FRONTEND_URL", "http://localhost:8080"),
        app_id=os.environ.get("APP_ID", "storefront"),
        default_stock_count=int(os.environ.get("DEFAULT_STOCK_COUNT", "15")),
        notification_cache_ttl=float(os.environ.get("NOTIFICATION_CACHE_TTL", "300")),
        from_email=os.environ.get("FROM_EMAIL", "info@quibble.online"),
        from_name=os.environ.get("FROM_NAME", "Quibble Wellness Store"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        notification_mode=os.environ.get("NOTIFICATION_MODE", "inline"),
    )
