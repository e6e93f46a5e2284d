"""
Marketing — メール送信 API クライアント

送信はベストエフォート。失敗は False を返すだけで例外にしない。
"""

import logging

import httpx

logger = logging.getLogger(__name__)


class EmailClient:
    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        from_email: str,
        from_name: str,
    ):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.from_email = from_email
        self.from_name = from_name

    async def send_email(self, to: str, subject: str, html_content: str) -> bool:
        try:
            resp = await self.client.post(
                f"{self.base_url}/send-email",
                json={
                    "to": to,
                    "subject": subject,
                    "htmlContent": html_content,
                    "fromEmail": self.from_email,
                    "fromName": self.from_name,
                },
            )
        except httpx.HTTPError:
            logger.exception("Failed to send email to %s", to)
            return False

        if resp.status_code >= 400:
            logger.warning("Email API returned %d for %s", resp.status_code, to)
            return False
        try:
            return bool(resp.json().get("success"))
        except ValueError:
            logger.warning("Email API returned a non-JSON body for %s", to)
            return False
