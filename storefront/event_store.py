"""
Storefront — イベントストア

在庫・注文のすべての状態変更をイベントとして追記する。
集約はイベントをリプレイして復元する。
(aggregate_id, version) の主キーが楽観的ロックになる:
同じバージョンを二重に書こうとすると IntegrityError で失敗する。
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .db import dump_json, load_json, utcnow


async def append_event(
    session: AsyncSession,
    aggregate_id: str,
    aggregate_type: str,
    event_type: str,
    event_data: dict,
    expected_version: int,
) -> int:
    """expected_version の次の番号でイベントを 1 件追記し、その番号を返す。コミットは呼び出し側。"""
    version = expected_version + 1
    await session.execute(
        text("""
            INSERT INTO event_store
                (aggregate_id, aggregate_type, event_type, event_data, version, created_at)
            VALUES
                (:aggregate_id, :aggregate_type, :event_type, :event_data, :version, :now)
        """),
        {
            "aggregate_id": aggregate_id,
            "aggregate_type": aggregate_type,
            "event_type": event_type,
            "event_data": dump_json(event_data),
            "version": version,
            "now": utcnow().isoformat(),
        },
    )
    return version


async def current_version(session: AsyncSession, aggregate_id: str) -> int:
    """集約の最新バージョン (イベントが無ければ 0)。"""
    result = await session.execute(
        text("SELECT MAX(version) FROM event_store WHERE aggregate_id = :aggregate_id"),
        {"aggregate_id": aggregate_id},
    )
    return result.scalar() or 0


async def load_events(
    session: AsyncSession,
    aggregate_id: str | None = None,
) -> list[dict]:
    """
    イベントを読み出す。

    aggregate_id を渡すとその集約のイベントをバージョン順に、
    省略すると全集約のイベントを記録順に返す (監査・デバッグ用)。
    """
    sql = "SELECT * FROM event_store"
    params = {}
    if aggregate_id is None:
        sql += " ORDER BY created_at, aggregate_id, version"
    else:
        sql += " WHERE aggregate_id = :aggregate_id ORDER BY version"
        params["aggregate_id"] = aggregate_id

    result = await session.execute(text(sql), params)
    return [
        {
            "aggregate_id": row.aggregate_id,
            "aggregate_type": row.aggregate_type,
            "event_type": row.event_type,
            "event_data": load_json(row.event_data, {}),
            "version": row.version,
            "created_at": row.created_at,
        }
        for row in result.fetchall()
    ]
