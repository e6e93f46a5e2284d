"""
Tracking — 配送タイムライン

注文に紐づく配送イベントの並びを扱う純粋関数群。

  先頭は常に出荷元 "Quibble"、末尾は常に配送先 "Customer" (アンカー)。
  その間のイベントはタイムスタンプ昇順。

管理画面ではカードをドラッグで自由に並べ替えられるが、保存時には
必ず canonicalize() で並べ直す。アンカーを動かす並べ替えは拒否する。
"""

from datetime import datetime, timedelta
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, Field

from .errors import AnchorMoveError, InvalidTrackingEventError

ORIGIN_LOCATION = "Quibble"
DESTINATION_LOCATION = "Customer"
ANCHOR_LOCATIONS = (ORIGIN_LOCATION, DESTINATION_LOCATION)


class TrackingEvent(BaseModel):
    id: str = Field(default_factory=lambda: f"event_{uuid4().hex[:12]}")
    timestamp: datetime | None = None
    location: str
    status: str
    description: str = ""

    @property
    def is_anchor(self) -> bool:
        return self.location in ANCHOR_LOCATIONS


class TrackingInfo(BaseModel):
    tracking_number: str
    carrier: str
    status: Literal["pending", "in_transit", "out_for_delivery", "delivered"] = "in_transit"
    estimated_delivery: datetime | None = None
    current_location: str = ""
    tracking_history: list[TrackingEvent] = Field(default_factory=list)


def default_tracking_number(order_id: str) -> str:
    return f"TRK{order_id[-8:].upper()}"


def _sort_key(event: TrackingEvent) -> tuple[bool, float]:
    # 日時未定のイベントは日時ありの後ろ (入力順を保つ)
    if event.timestamp is None:
        return (True, 0.0)
    return (False, event.timestamp.timestamp())


def _check_single_anchors(events: list[TrackingEvent]) -> None:
    for location in ANCHOR_LOCATIONS:
        if sum(1 for e in events if e.location == location) > 1:
            raise InvalidTrackingEventError(
                f"Timeline may contain only one '{location}' event"
            )


def canonicalize(events: list[TrackingEvent]) -> list[TrackingEvent]:
    """アンカーを両端に固定し、残りをタイムスタンプ昇順に並べる。"""
    _check_single_anchors(events)
    origin = [e for e in events if e.location == ORIGIN_LOCATION]
    destination = [e for e in events if e.location == DESTINATION_LOCATION]
    middle = sorted((e for e in events if not e.is_anchor), key=_sort_key)
    return origin + middle + destination


def reorder(
    current: list[TrackingEvent],
    proposed: list[TrackingEvent],
) -> list[TrackingEvent]:
    """
    呼び出し側が提案した並びを受け付ける。

    既存イベントの過不足がある提案と、アンカーを端から動かす提案は拒否する。
    受け付けた場合も、保存される並びは canonicalize() の結果になる。
    """
    if sorted(e.id for e in current) != sorted(e.id for e in proposed):
        raise InvalidTrackingEventError(
            "Reorder must contain exactly the existing tracking events"
        )

    for event in current:
        if event.is_anchor and not any(
            p.id == event.id and p.location == event.location for p in proposed
        ):
            raise AnchorMoveError(event.location, "cannot be removed or renamed")

    if proposed:
        origin = [i for i, e in enumerate(proposed) if e.location == ORIGIN_LOCATION]
        if origin and origin[0] != 0:
            raise AnchorMoveError(ORIGIN_LOCATION, "must stay first")
        destination = [
            i for i, e in enumerate(proposed) if e.location == DESTINATION_LOCATION
        ]
        if destination and destination[0] != len(proposed) - 1:
            raise AnchorMoveError(DESTINATION_LOCATION, "must stay last")

    return canonicalize(proposed)


def add_event(
    events: list[TrackingEvent],
    event: TrackingEvent,
) -> list[TrackingEvent]:
    if any(e.id == event.id for e in events):
        raise InvalidTrackingEventError(f"Duplicate tracking event id: {event.id}")
    return canonicalize([*events, event])


def edit_event(
    events: list[TrackingEvent],
    event_id: str,
    *,
    location: str | None = None,
    status: str | None = None,
    description: str | None = None,
    timestamp: datetime | None = None,
) -> list[TrackingEvent]:
    """イベントの内容を更新する。アンカーの所在地は変更できない。"""
    target = next((e for e in events if e.id == event_id), None)
    if target is None:
        raise InvalidTrackingEventError(f"Tracking event not found: {event_id}")

    if location is not None and location != target.location:
        if target.is_anchor:
            raise AnchorMoveError(target.location, "cannot change location")
        if location in ANCHOR_LOCATIONS:
            raise AnchorMoveError(location, "is reserved for the timeline anchors")

    changes = {
        key: value
        for key, value in {
            "location": location,
            "status": status,
            "description": description,
            "timestamp": timestamp,
        }.items()
        if value is not None
    }
    updated = target.model_copy(update=changes)
    return canonicalize([updated if e.id == event_id else e for e in events])


def remove_event(events: list[TrackingEvent], event_id: str) -> list[TrackingEvent]:
    target = next((e for e in events if e.id == event_id), None)
    if target is None:
        raise InvalidTrackingEventError(f"Tracking event not found: {event_id}")
    if target.is_anchor:
        raise AnchorMoveError(target.location, "cannot be removed")
    return canonicalize([e for e in events if e.id != event_id])


def initial_timeline(now: datetime, delivered: bool = False) -> list[TrackingEvent]:
    """初回出荷時のタイムライン: 出荷元 → 物流センター → 配送先。"""
    return [
        TrackingEvent(
            id="1",
            timestamp=now - timedelta(days=2),
            location=ORIGIN_LOCATION,
            status="Order Processed",
            description="Order has been processed and is ready for shipment",
        ),
        TrackingEvent(
            id="2",
            timestamp=now - timedelta(days=1),
            location="Distribution Center",
            status="In Transit",
            description="Package is in transit to destination",
        ),
        TrackingEvent(
            id="3",
            timestamp=now if delivered else None,
            location=DESTINATION_LOCATION,
            status="Delivered" if delivered else "To Be Delivered",
            description="Package has been delivered successfully"
            if delivered
            else "Awaiting delivery confirmation",
        ),
    ]


def mark_delivered(events: list[TrackingEvent], now: datetime) -> list[TrackingEvent]:
    """配送完了時に配送先アンカーへ日時とステータスを入れる。"""
    return canonicalize(
        [
            e.model_copy(
                update={
                    "timestamp": e.timestamp or now,
                    "status": "Delivered",
                    "description": "Package has been delivered successfully",
                }
            )
            if e.location == DESTINATION_LOCATION
            else e
            for e in events
        ]
    )
