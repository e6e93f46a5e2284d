"""
Marketing — メールキャンペーン

購読者を 3 種類のキャンペーンで追いかける:
  discount_code  … 初回割引コード (未送信の人)
  cart_reminder  … カートに商品が残っている人へのリマインド (未送信の人)
  abandonment    … 一度も購入していない人への追加割引 (未送信の人)

送信は 1 通ずつベストエフォートで行い、成功・失敗の件数を数える。
送信を試みた購読者には成否に関わらず「送信済み」フラグを立てる。
"""

import logging
import re
from typing import Literal
from uuid import uuid4

from sqlalchemy import bindparam, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import BATCH_LIMIT, chunked, dump_json, ensure_session, utcnow
from ..errors import NoEligibleSubscribersError, SubscriberNotFoundError
from .email import EmailClient
from .queries import list_subscribers, subscriber_to_dict

logger = logging.getLogger(__name__)

CampaignType = Literal["discount_code", "cart_reminder", "abandonment"]

SENT_FLAGS = {
    "discount_code": "discount_code_sent",
    "cart_reminder": "cart_reminder_sent",
    "abandonment": "abandonment_email_sent",
}

DEFAULT_TEMPLATES = {
    "discount_code": (
        "🎁 Your 10% Discount Code is Here!",
        "Hi there!\n\n"
        "Thank you for joining our wellness community! \n\n"
        "Here's your exclusive 10% discount code: **{code}**\n\n"
        "Use this code on your first order to save 10% on everything!\n\n"
        "Shop now: [Your Store Link]\n\n"
        "Best regards,\nThe Wellness Team",
        "WELLNESS10",
    ),
    "cart_reminder": (
        "🛒 Don't forget your cart items!",
        "Hi there!\n\n"
        "We noticed you have some amazing products waiting in your cart!\n\n"
        "Don't miss out on these wellness essentials. Complete your purchase now "
        "and start your wellness journey today.\n\n"
        "View your cart: [Cart Link]\n\n"
        "Best regards,\nThe Wellness Team",
        "",
    ),
    "abandonment": (
        "🔥 Special 20% Off - Limited Time!",
        "Hi there!\n\n"
        "We miss you! 🥺\n\n"
        "We noticed you haven't completed your purchase yet. As a special thank you "
        "for your interest, we're offering you an exclusive 20% discount!\n\n"
        "Use code: **{code}**\n\n"
        "This offer expires in 48 hours, so don't wait!\n\n"
        "Shop now: [Your Store Link]\n\n"
        "Best regards,\nThe Wellness Team",
        "COMEBACK20",
    ),
}

EMAIL_TEMPLATE = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
  <div style="background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); color: white; padding: 30px; text-align: center; border-radius: 10px 10px 0 0;">
    <h1 style="margin: 0; font-size: 24px;">🎁 {store_name}</h1>
  </div>
  <div style="background: white; padding: 30px; border: 1px solid #e0e0e0; border-top: none; border-radius: 0 0 10px 10px;">
    {body}
    <hr style="border: none; border-top: 1px solid #e0e0e0; margin: 30px 0;">
    <p style="text-align: center; color: #666; font-size: 12px;">
      © {year} {store_name}. All rights reserved.
    </p>
  </div>
</div>
"""


def default_template(campaign_type: CampaignType, discount_code: str | None = None) -> tuple[str, str]:
    """キャンペーン種別ごとの既定の件名と本文。"""
    subject, content, fallback_code = DEFAULT_TEMPLATES[campaign_type]
    return subject, content.replace("{code}", discount_code or fallback_code)


def render_campaign_html(
    content: str,
    store_name: str = "Quibble Wellness Store",
    link_url: str = "#",
) -> str:
    """
    プレーンテキストの本文をメール用 HTML にする。

    改行 → <br>、**太字** → <strong>、[リンク] → <a>。
    """
    html = content.replace("\n", "<br>")
    html = re.sub(r"\*\*(.*?)\*\*", r"<strong>\1</strong>", html)
    html = re.sub(
        r"\[(.*?)\]",
        lambda m: f'<a href="{link_url}" style="color: #007bff; '
        f'text-decoration: underline;">{m.group(1)}</a>',
        html,
    )
    return EMAIL_TEMPLATE.format(store_name=store_name, body=html, year=utcnow().year)


def eligible_subscribers(
    subscribers: list[dict],
    campaign_type: CampaignType,
    selected_ids: list[str] | None = None,
) -> list[dict]:
    if campaign_type == "discount_code":
        eligible = [s for s in subscribers if not s["discount_code_sent"]]
    elif campaign_type == "cart_reminder":
        eligible = [
            s for s in subscribers if s["cart_items"] and not s["cart_reminder_sent"]
        ]
    elif campaign_type == "abandonment":
        eligible = [
            s
            for s in subscribers
            if not s["abandonment_email_sent"] and not s["purchase_history"]
        ]
    else:
        raise ValueError(f"Unknown campaign type: {campaign_type}")

    if selected_ids:
        eligible = [s for s in eligible if s["id"] in selected_ids]
    return eligible


async def send_campaign(
    session: AsyncSession,
    email: EmailClient,
    campaign_type: CampaignType,
    subject: str | None = None,
    content: str | None = None,
    discount_code: str | None = None,
    discount_percentage: int | None = None,
    selected_ids: list[str] | None = None,
    link_url: str = "#",
    batch_size: int = BATCH_LIMIT,
) -> dict:
    """キャンペーンを送信して記録し、{campaign_id, success_count, fail_count} を返す。"""
    ensure_session(session)
    recipients = eligible_subscribers(
        await list_subscribers(session), campaign_type, selected_ids
    )
    if not recipients:
        raise NoEligibleSubscribersError(campaign_type)

    default_subject, default_content = default_template(campaign_type, discount_code)
    subject = subject or default_subject
    content = content or default_content
    html = render_campaign_html(content, email.from_name, link_url)

    success_count = 0
    fail_count = 0
    for subscriber in recipients:
        if await email.send_email(subscriber["email"], subject, html):
            success_count += 1
        else:
            fail_count += 1

    campaign_id = uuid4().hex
    await session.execute(
        text("""
            INSERT INTO email_campaigns
                (id, type, subject, content, discount_code, discount_percentage,
                 status, recipients, sent_count, success_count, fail_count, sent_at)
            VALUES
                (:id, :type, :subject, :content, :discount_code, :discount_percentage,
                 :status, :recipients, :sent_count, :success_count, :fail_count, :now)
        """),
        {
            "id": campaign_id,
            "type": campaign_type,
            "subject": subject,
            "content": content,
            "discount_code": discount_code.strip() if discount_code else None,
            "discount_percentage": discount_percentage,
            "status": "sent" if success_count else "failed",
            "recipients": dump_json([s["email"] for s in recipients]),
            "sent_count": len(recipients),
            "success_count": success_count,
            "fail_count": fail_count,
            "now": utcnow().isoformat(),
        },
    )
    await session.commit()

    flag = SENT_FLAGS[campaign_type]
    statement = text(
        f"UPDATE email_subscribers SET {flag} = :sent WHERE id IN :ids"
    ).bindparams(bindparam("ids", expanding=True))
    for batch in chunked([s["id"] for s in recipients], batch_size):
        await session.execute(statement, {"sent": True, "ids": batch})
        await session.commit()

    logger.info(
        "Campaign %s (%s): %d sent, %d failed",
        campaign_id,
        campaign_type,
        success_count,
        fail_count,
    )
    return {
        "campaign_id": campaign_id,
        "success_count": success_count,
        "fail_count": fail_count,
    }


async def add_subscriber(
    session: AsyncSession,
    email: str,
    source: str = "popup",
    cart_items: list | None = None,
    purchase_history: list | None = None,
    tags: list[str] | None = None,
) -> dict:
    """購読者を登録する。同じメールアドレスが既にあればそれを返す。"""
    ensure_session(session)
    subscriber_id = uuid4().hex
    try:
        await session.execute(
            text("""
                INSERT INTO email_subscribers
                    (id, email, source, status, discount_code_sent, cart_reminder_sent,
                     abandonment_email_sent, cart_items, purchase_history, tags, created_at)
                VALUES
                    (:id, :email, :source, 'active', :sent, :sent, :sent,
                     :cart_items, :purchase_history, :tags, :now)
            """),
            {
                "id": subscriber_id,
                "email": email.strip().lower(),
                "source": source,
                "sent": False,
                "cart_items": dump_json(cart_items or []),
                "purchase_history": dump_json(purchase_history or []),
                "tags": dump_json(tags or []),
                "now": utcnow().isoformat(),
            },
        )
        await session.commit()
    except IntegrityError:
        await session.rollback()
        logger.info("Subscriber %s already registered", email)

    result = await session.execute(
        text("SELECT * FROM email_subscribers WHERE email = :email"),
        {"email": email.strip().lower()},
    )
    return subscriber_to_dict(result.fetchone())


async def delete_subscriber(session: AsyncSession, subscriber_id: str) -> None:
    ensure_session(session)
    result = await session.execute(
        text("DELETE FROM email_subscribers WHERE id = :id"),
        {"id": subscriber_id},
    )
    if result.rowcount == 0:
        await session.rollback()
        raise SubscriberNotFoundError(subscriber_id)
    await session.commit()
