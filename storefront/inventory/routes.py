"""
Inventory — HTTP エンドポイント

CQRS パターンに従い、Command (POST) と Query (GET) のエンドポイントを分離。
在庫の直接設定・購入確定・復元は管理者のみ。
"""

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings
from ..deps import get_redis, get_session, get_settings, require_team_member
from ..errors import ProductNotFoundError
from . import commands, queries

router = APIRouter()


# ── Request Models ───────────────────────────────


class QuantityRequest(BaseModel):
    quantity: int = Field(gt=0)
    order_id: str | None = None


class SetStockRequest(BaseModel):
    stock_count: int = Field(ge=0)


# ── Command Endpoints (Write 側) ─────────────────


@router.post("/commands/inventory/{product_id}/reserve")
async def cmd_reserve(
    product_id: str,
    req: QuantityRequest,
    session: AsyncSession = Depends(get_session),
    redis: aioredis.Redis = Depends(get_redis),
):
    """
    在庫引き当てコマンド（カート投入）

    空きが足りなければ空き数まで減らして引き当て直し、adjusted で知らせる。
    空きが 0 なら 409。
    """
    quantity, adjusted = req.quantity, False
    ok = await commands.reserve_stock(
        session, redis, product_id, quantity, order_id=req.order_id
    )
    if not ok:
        stock = await queries.get_product_stock(session, product_id)
        available = stock["available"] if stock else 0
        quantity, adjusted = queries.clamp_to_available(req.quantity, available)
        if quantity > 0:
            ok = await commands.reserve_stock(
                session, redis, product_id, quantity, order_id=req.order_id
            )
        if not ok:
            raise HTTPException(
                status_code=409,
                detail=f"Insufficient stock: requested={req.quantity}, available={available}",
            )
    return {
        "success": True,
        "quantity": quantity,
        "adjusted": adjusted,
        "stock": await queries.get_product_stock(session, product_id),
    }


@router.post("/commands/inventory/{product_id}/release")
async def cmd_release(
    product_id: str,
    req: QuantityRequest,
    session: AsyncSession = Depends(get_session),
    redis: aioredis.Redis = Depends(get_redis),
):
    """在庫解放コマンド（カートから削除）"""
    await commands.release_stock(
        session, redis, product_id, req.quantity, order_id=req.order_id
    )
    return {"success": True, "stock": await queries.get_product_stock(session, product_id)}


@router.post("/commands/inventory/{product_id}/purchase")
async def cmd_purchase(
    product_id: str,
    req: QuantityRequest,
    session: AsyncSession = Depends(get_session),
    redis: aioredis.Redis = Depends(get_redis),
    _admin: str = Depends(require_team_member),
):
    await commands.purchase_stock(
        session, redis, product_id, req.quantity, order_id=req.order_id
    )
    return {"success": True, "stock": await queries.get_product_stock(session, product_id)}


@router.post("/commands/inventory/{product_id}/restore")
async def cmd_restore(
    product_id: str,
    req: QuantityRequest,
    session: AsyncSession = Depends(get_session),
    redis: aioredis.Redis = Depends(get_redis),
    settings: Settings = Depends(get_settings),
    _admin: str = Depends(require_team_member),
):
    await commands.restore_stock(
        session,
        redis,
        product_id,
        req.quantity,
        order_id=req.order_id,
        default_stock=settings.default_stock_count,
    )
    return {"success": True, "stock": await queries.get_product_stock(session, product_id)}


@router.post("/commands/inventory/{product_id}/set")
async def cmd_set_stock(
    product_id: str,
    req: SetStockRequest,
    session: AsyncSession = Depends(get_session),
    redis: aioredis.Redis = Depends(get_redis),
    _admin: str = Depends(require_team_member),
):
    """在庫数の直接設定（管理画面の在庫編集）"""
    await commands.set_stock(session, redis, product_id, req.stock_count)
    return {"success": True, "stock": await queries.get_product_stock(session, product_id)}


# ── Query Endpoints (Read 側) ────────────────────


@router.get("/queries/inventory")
async def query_list_stock(session: AsyncSession = Depends(get_session)):
    return await queries.list_product_stock(session)


@router.get("/queries/inventory/{product_id}")
async def query_get_stock(
    product_id: str,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    """在庫を取得する。台帳が無い商品は既定数で作成される。"""
    await commands.get_stock(session, product_id, settings.default_stock_count)
    stock = await queries.get_product_stock(session, product_id)
    if not stock:
        raise ProductNotFoundError(product_id)
    return stock
