"""
Inventory — イベント定義

在庫台帳で発生するイベント。
"""

from typing import ClassVar

from ..messaging import DomainEvent


class InventoryEvent(DomainEvent):
    product_id: str
    order_id: str | None = None


class InventoryReserved(InventoryEvent):
    """カート投入で在庫が引き当てられた"""
    event_type: ClassVar[str] = "InventoryReserved"
    quantity: int


class InventoryReservationFailed(InventoryEvent):
    """在庫引き当てが失敗した（在庫不足）"""
    event_type: ClassVar[str] = "InventoryReservationFailed"
    quantity_requested: int
    quantity_available: int


class InventoryReleased(InventoryEvent):
    """引き当てが解放された（カートから削除・補償トランザクション）"""
    event_type: ClassVar[str] = "InventoryReleased"
    quantity: int


class InventoryPurchased(InventoryEvent):
    """決済確定で引き当てが販売に変わった"""
    event_type: ClassVar[str] = "InventoryPurchased"
    quantity: int


class InventoryRestored(InventoryEvent):
    """返金承認で販売済み在庫が戻された"""
    event_type: ClassVar[str] = "InventoryRestored"
    quantity: int


class InventoryAdjusted(InventoryEvent):
    """管理者が在庫数を直接設定した"""
    event_type: ClassVar[str] = "InventoryAdjusted"
    stock_count: int
