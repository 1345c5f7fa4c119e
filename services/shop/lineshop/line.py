"""
Shop Service — LINE Messaging API クライアント

プロセスのエントリーポイントで httpx.AsyncClient とともに生成し、
必要なコンポーネントへ明示的に渡す。
"""

import base64
import hashlib
import hmac

import httpx

PUSH_ENDPOINT = "https://api.line.me/v2/bot/message/push"
REPLY_ENDPOINT = "https://api.line.me/v2/bot/message/reply"


class LineMessagingClient:
    def __init__(self, http: httpx.AsyncClient, channel_access_token: str):
        self.http = http
        self.channel_access_token = channel_access_token

    @property
    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.channel_access_token}"}

    async def push_message(self, to: str, messages: list[dict]) -> None:
        resp = await self.http.post(
            PUSH_ENDPOINT,
            json={"to": to, "messages": messages},
            headers=self._headers,
        )
        resp.raise_for_status()

    async def reply_message(self, reply_token: str, messages: list[dict]) -> None:
        resp = await self.http.post(
            REPLY_ENDPOINT,
            json={"replyToken": reply_token, "messages": messages},
            headers=self._headers,
        )
        resp.raise_for_status()

    async def reply_text(self, reply_token: str, text: str) -> None:
        await self.reply_message(reply_token, [text_message(text)])


def text_message(text: str) -> dict:
    return {"type": "text", "text": text}


def verify_signature(channel_secret: str, body: bytes, signature: str | None) -> bool:
    """X-Line-Signature (HMAC-SHA256 / Base64) を検証する。"""
    if not channel_secret or not signature:
        return False
    digest = hmac.new(channel_secret.encode(), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode()
    return hmac.compare_digest(expected, signature)
