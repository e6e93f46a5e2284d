"""
Marketing — HTTP エンドポイント

購読登録は誰でも可、キャンペーン送信と一覧は admin のみ (team_member は不可)。
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings
from ..deps import get_email, get_session, get_settings, require_admin
from . import commands, queries
from .commands import CampaignType
from .email import EmailClient

router = APIRouter()


class SubscribeRequest(BaseModel):
    email: str
    source: str = "popup"
    cart_items: list = []
    tags: list[str] = []


class CampaignRequest(BaseModel):
    type: CampaignType
    subject: str | None = None
    content: str | None = None
    discount_code: str | None = None
    discount_percentage: int | None = None
    selected_ids: list[str] | None = None


@router.post("/commands/marketing/subscribers")
async def cmd_add_subscriber(
    req: SubscribeRequest,
    session: AsyncSession = Depends(get_session),
):
    return await commands.add_subscriber(
        session, req.email, req.source, cart_items=req.cart_items, tags=req.tags
    )


@router.delete("/commands/marketing/subscribers/{subscriber_id}")
async def cmd_delete_subscriber(
    subscriber_id: str,
    session: AsyncSession = Depends(get_session),
    _admin: str = Depends(require_admin),
):
    await commands.delete_subscriber(session, subscriber_id)
    return {"success": True}


@router.post("/commands/marketing/campaigns")
async def cmd_send_campaign(
    req: CampaignRequest,
    session: AsyncSession = Depends(get_session),
    email: EmailClient = Depends(get_email),
    settings: Settings = Depends(get_settings),
    _admin: str = Depends(require_admin),
):
    """キャンペーンを送信する。対象者がいなければ 400。"""
    return await commands.send_campaign(
        session,
        email,
        req.type,
        subject=req.subject,
        content=req.content,
        discount_code=req.discount_code,
        discount_percentage=req.discount_percentage,
        selected_ids=req.selected_ids,
        link_url=settings.frontend_url,
    )


@router.get("/queries/marketing/subscribers")
async def query_subscribers(
    session: AsyncSession = Depends(get_session),
    _admin: str = Depends(require_admin),
):
    return await queries.list_subscribers(session)


@router.get("/queries/marketing/stats")
async def query_stats(
    session: AsyncSession = Depends(get_session),
    _admin: str = Depends(require_admin),
):
    return await queries.subscriber_stats(session)


@router.get("/queries/marketing/campaigns")
async def query_campaigns(
    session: AsyncSession = Depends(get_session),
    _admin: str = Depends(require_admin),
):
    return await queries.list_campaigns(session)
