"""
Notifications — 未読件数キャッシュ

(テナント, ユーザー) ごとに未読件数を TTL 付きで保持する。
通知を書き換える操作は必ず invalidate() を呼ぶ。
アプリ単位でインスタンスを持ち、テストでは差し替えられる。
"""

import time
from typing import Callable

DEFAULT_TTL = 300.0


class NotificationCountCache:
    def __init__(
        self,
        ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[tuple[str, str], tuple[int, float]] = {}

    def get(self, tenant_id: str, user_id: str) -> int | None:
        entry = self._entries.get((tenant_id, user_id))
        if entry is None:
            return None
        count, stored_at = entry
        if self._clock() - stored_at >= self.ttl:
            del self._entries[(tenant_id, user_id)]
            return None
        return count

    def set(self, tenant_id: str, user_id: str, count: int) -> None:
        self._entries[(tenant_id, user_id)] = (count, self._clock())

    def invalidate(self, tenant_id: str, user_id: str) -> None:
        self._entries.pop((tenant_id, user_id), None)
