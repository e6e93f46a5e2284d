"""
Users — ロール判定

user_profiles テーブルのロールで管理操作の可否を決める。
プロフィールが無いユーザーは customer 扱い、読み取りに失敗したら
ロール無し (= 何も許可しない) として扱う。
"""

import logging

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .db import dump_json, ensure_session, load_json, utcnow

logger = logging.getLogger(__name__)

ADMIN = "admin"
TEAM_MEMBER = "team_member"
CUSTOMER = "customer"


async def get_user_roles(session: AsyncSession, user_id: str | None) -> list[str]:
    if not user_id or session is None:
        return []
    try:
        result = await session.execute(
            text("SELECT roles FROM user_profiles WHERE uid = :uid"),
            {"uid": user_id},
        )
        row = result.fetchone()
    except SQLAlchemyError:
        logger.exception("Error fetching user roles for %s", user_id)
        return []
    if not row:
        return [CUSTOMER]
    return load_json(row.roles, [])


async def has_role(session: AsyncSession, user_id: str | None, roles: list[str]) -> bool:
    user_roles = await get_user_roles(session, user_id)
    return any(role in roles for role in user_roles)


async def is_admin(session: AsyncSession, user_id: str | None) -> bool:
    return await has_role(session, user_id, [ADMIN])


async def is_team_member(session: AsyncSession, user_id: str | None) -> bool:
    return await has_role(session, user_id, [ADMIN, TEAM_MEMBER])


async def save_user_profile(
    session: AsyncSession,
    uid: str,
    email: str,
    roles: list[str],
    display_name: str | None = None,
) -> None:
    ensure_session(session)
    now = utcnow().isoformat()
    await session.execute(
        text("""
            INSERT INTO user_profiles (uid, email, display_name, roles, created_at, updated_at)
            VALUES (:uid, :email, :display_name, :roles, :now, :now)
            ON CONFLICT (uid) DO UPDATE SET
                email = :email,
                display_name = :display_name,
                roles = :roles,
                updated_at = :now
        """),
        {
            "uid": uid,
            "email": email,
            "display_name": display_name,
            "roles": dump_json(roles),
            "now": now,
        },
    )
    await session.commit()
