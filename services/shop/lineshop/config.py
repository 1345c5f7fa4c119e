"""
Shop Service — 設定

環境変数はエントリーポイントで一度だけ読み込み、
Settings として各コンポーネントに明示的に渡す。
"""

import logging
import os
from datetime import timezone, tzinfo
from zoneinfo import ZoneInfo

from pydantic import BaseModel


class Settings(BaseModel):
    database_url: str
    redis_url: str = "redis://localhost:6379"
    line_login_channel_id: str = ""
    line_channel_access_token: str = ""
    line_channel_secret: str = ""
    # 1日の購入上限の「1日」をどのタイムゾーンで区切るか
    daily_limit_tz: str = "Asia/Tokyo"
    daily_order_limit: int = 10
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        env = os.environ
        return cls(
            database_url=env["DATABASE_URL"],
            redis_url=env.get("REDIS_URL", "redis://localhost:6379"),
            line_login_channel_id=env.get("LINE_LOGIN_CHANNEL_ID", ""),
            line_channel_access_token=env.get("LINE_CHANNEL_ACCESS_TOKEN", ""),
            line_channel_secret=env.get("LINE_CHANNEL_SECRET", ""),
            daily_limit_tz=env.get("DAILY_LIMIT_TZ", "Asia/Tokyo"),
            daily_order_limit=int(env.get("DAILY_ORDER_LIMIT", "10")),
            log_level=env.get("LOG_LEVEL", "INFO"),
        )

    @property
    def daily_limit_tzinfo(self) -> tzinfo:
        if self.daily_limit_tz.upper() == "UTC":
            return timezone.utc
        return ZoneInfo(self.daily_limit_tz)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
