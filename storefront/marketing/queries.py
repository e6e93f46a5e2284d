"""
Marketing — クエリハンドラ
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import load_json


def subscriber_to_dict(row) -> dict:
    return {
        "id": row.id,
        "email": row.email,
        "source": row.source,
        "status": row.status,
        "discount_code_sent": bool(row.discount_code_sent),
        "cart_reminder_sent": bool(row.cart_reminder_sent),
        "abandonment_email_sent": bool(row.abandonment_email_sent),
        "cart_items": load_json(row.cart_items, []),
        "purchase_history": load_json(row.purchase_history, []),
        "tags": load_json(row.tags, []),
        "created_at": row.created_at,
    }


def campaign_to_dict(row) -> dict:
    return {
        "id": row.id,
        "type": row.type,
        "subject": row.subject,
        "content": row.content,
        "discount_code": row.discount_code,
        "discount_percentage": row.discount_percentage,
        "status": row.status,
        "recipients": load_json(row.recipients, []),
        "sent_count": row.sent_count,
        "success_count": row.success_count,
        "fail_count": row.fail_count,
        "sent_at": row.sent_at,
    }


async def list_subscribers(session: AsyncSession) -> list[dict]:
    result = await session.execute(
        text("SELECT * FROM email_subscribers ORDER BY created_at DESC"),
    )
    return [subscriber_to_dict(row) for row in result.fetchall()]


async def list_campaigns(session: AsyncSession) -> list[dict]:
    result = await session.execute(
        text("SELECT * FROM email_campaigns ORDER BY sent_at DESC"),
    )
    return [campaign_to_dict(row) for row in result.fetchall()]


async def subscriber_stats(session: AsyncSession) -> dict:
    """管理画面のサマリー (各キャンペーンの送信済み人数)。"""
    subscribers = await list_subscribers(session)
    return {
        "total": len(subscribers),
        "discount_codes_sent": sum(s["discount_code_sent"] for s in subscribers),
        "cart_reminders_sent": sum(s["cart_reminder_sent"] for s in subscribers),
        "abandonment_emails_sent": sum(s["abandonment_email_sent"] for s in subscribers),
    }
