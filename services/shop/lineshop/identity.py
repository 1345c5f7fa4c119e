"""
Shop Service — 本人確認

LINE Login の ID トークンを LINE の verify API で検証し、
呼び出し元のユーザー ID (sub) を得る。トークンの中身はここでは解釈しない。
"""

import httpx
from pydantic import BaseModel, ValidationError

from .errors import Unauthorized

VERIFY_ENDPOINT = "https://api.line.me/oauth2/v2.1/verify"


class LineIdTokenPayload(BaseModel):
    iss: str = ""
    sub: str
    aud: str
    exp: int = 0
    iat: int = 0
    name: str | None = None
    picture: str | None = None
    email: str | None = None


def extract_bearer_token(authorization: str | None) -> str:
    if not authorization:
        raise Unauthorized("Authorization ヘッダーが必要です")
    scheme, _, token = authorization.partition(" ")
    if not token or scheme.lower() != "bearer":
        raise Unauthorized("Authorization ヘッダーが Bearer 形式ではありません")
    return token.strip()


class LineIdTokenVerifier:
    def __init__(self, http: httpx.AsyncClient, channel_id: str):
        self.http = http
        self.channel_id = channel_id

    async def verify(self, id_token: str) -> LineIdTokenPayload:
        if not self.channel_id:
            raise Unauthorized("LINE_LOGIN_CHANNEL_ID の環境変数を設定してください")
        try:
            resp = await self.http.post(
                VERIFY_ENDPOINT,
                data={"id_token": id_token, "client_id": self.channel_id},
            )
        except httpx.HTTPError as e:
            raise Unauthorized(f"LINE verify API error: {e}") from e

        if resp.status_code != 200:
            reason = resp.text or f"HTTP {resp.status_code}"
            raise Unauthorized(f"LINE verify API error: {reason}")

        try:
            payload = LineIdTokenPayload.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise Unauthorized("LINE verify API の応答を解釈できません") from e
        if payload.aud != self.channel_id:
            raise Unauthorized("LINE verify response の aud が一致しません")
        return payload
