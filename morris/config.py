import os
from typing import Optional

from pydantic import BaseModel


class Settings(BaseModel):
    """サーバ設定（環境変数から読み込む）"""
    redis_url: Optional[str] = None      # 未設定ならインメモリストア
    session_ttl_sec: int = 3600
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        # RenderのRedisは 'REDIS_URL' で渡ってくる
        values = {
            "redis_url": os.getenv("REDIS_URL") or None,
            "session_ttl_sec": os.getenv("SESSION_TTL_SEC"),
            "log_level": os.getenv("LOG_LEVEL"),
            "host": os.getenv("HOST"),
            "port": os.getenv("PORT"),
        }
        return cls(**{k: v for k, v in values.items() if v is not None})


settings = Settings.from_env()
