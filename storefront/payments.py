"""
Payments — 決済プロバイダ API クライアント

決済プロバイダ (Stripe の薄いラッパー API) を httpx で呼ぶ。
金額はドル建ての float で渡し、セント換算はプロバイダ側で行う。

通信エラー・2xx 以外の応答はすべて PaymentProviderError にまとめる。
find_payment_intent の 404 だけは「見つからなかった」として None を返す。
"""

import logging
from datetime import datetime

import httpx

from .errors import PaymentProviderError

logger = logging.getLogger(__name__)


class PaymentClient:
    def __init__(self, client: httpx.AsyncClient, base_url: str, frontend_url: str = ""):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.frontend_url = frontend_url

    async def _request(self, operation: str, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return await self.client.request(method, f"{self.base_url}{path}", **kwargs)
        except httpx.HTTPError as e:
            logger.exception("Payment provider %s request failed", operation)
            raise PaymentProviderError(operation, str(e)) from e

    @staticmethod
    def _json(operation: str, resp: httpx.Response) -> dict:
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("error", resp.text)
            except ValueError:
                detail = resp.text
            raise PaymentProviderError(operation, f"HTTP {resp.status_code}: {detail}")
        return resp.json()

    async def create_checkout_session(
        self, order_id: str, amount: float, description: str
    ) -> str:
        """チェックアウトセッションを作り、セッション ID を返す。"""
        resp = await self._request(
            "checkout session",
            "POST",
            "/create-checkout-session",
            json={
                "ticketId": order_id,
                "amount": amount,
                "description": description,
                "isStoreOrder": True,
            },
        )
        return self._json("checkout session", resp)["sessionId"]

    async def get_payment_intent(self, session_id: str) -> str | None:
        """完了したチェックアウトセッションの payment intent ID。"""
        resp = await self._request(
            "payment intent lookup",
            "GET",
            "/get-payment-intent",
            params={"sessionId": session_id},
        )
        if resp.status_code == 404:
            return None
        return self._json("payment intent lookup", resp).get("paymentIntentId")

    async def find_payment_intent(
        self,
        amount: float,
        customer_email: str,
        start: datetime,
        end: datetime,
    ) -> str | None:
        """
        金額と顧客メールで期間内の payment intent を探す。

        セッション ID を持たない古い注文の決済参照を補完するための
        フォールバック。呼び出し側が期間を必ず区切ること。
        """
        resp = await self._request(
            "payment intent search",
            "POST",
            "/find-payment-intent",
            json={
                "amount": amount,
                "customerEmail": customer_email,
                "startDate": start.isoformat(),
                "endDate": end.isoformat(),
            },
        )
        if resp.status_code == 404:
            return None
        return self._json("payment intent search", resp).get("paymentIntentId")

    async def process_refund(
        self,
        payment_intent_id: str,
        amount: float,
        reason: str = "requested_by_customer",
    ) -> dict:
        """返金を実行し {refundId, status, amount} を返す。"""
        resp = await self._request(
            "refund",
            "POST",
            "/process-refund",
            json={
                "paymentIntentId": payment_intent_id,
                "amount": amount,
                "reason": reason,
            },
        )
        return self._json("refund", resp)
