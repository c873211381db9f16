import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv


# ----------------------------
# Config & Constants
# ----------------------------
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./foodsave.db"
DEFAULT_PORT = 3000


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    resv_backend: str = "sql"  # 'sql' | 'redis'
    redis_url: str = "redis://127.0.0.1:6379"
    redis_max_conn: int = 64
    db_pool_size: int = 10
    db_max_overflow: int = 10
    db_pool_timeout: int = 30
    db_gate_limit: Optional[int] = None

    payment_provider: str = "stripe"  # 'stripe' | 'mock'
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    mock_secret: str = ""
    mock_webhook_url: str = (
        f"http://localhost:{DEFAULT_PORT}/api/checkout/webhook"
    )

    base_url: str = f"http://localhost:{DEFAULT_PORT}"
    admin_token: str = ""
    admin_email: str = ""
    resend_api_key: str = ""
    resend_from_email: str = ""
    public_logo_url: str = ""

    log_level: str = "INFO"
    log_json: bool = True

    @property
    def webhook_secret(self) -> str:
        if self.payment_provider == "stripe":
            return self.stripe_webhook_secret
        return self.mock_secret

    @property
    def mail_enabled(self) -> bool:
        return bool(self.resend_api_key and self.resend_from_email)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        if env is None:
            load_dotenv()
            env = os.environ

        # MockPay only when asked for explicitly
        provider = env.get("PAYMENT_PROVIDER", "stripe").lower()
        port = int(env.get("PORT", str(DEFAULT_PORT)))
        base_url = env.get("BASE_URL", f"http://localhost:{port}").rstrip("/")

        return cls(
            database_url=env.get("DATABASE_URL", DEFAULT_DATABASE_URL),
            resv_backend=env.get("RESV_BACKEND", "sql").lower(),
            redis_url=env.get("REDIS_URL", "redis://127.0.0.1:6379"),
            redis_max_conn=int(env.get("REDIS_MAX_CONN", "64")),
            db_pool_size=int(env.get("DB_POOL_SIZE", "10")),
            db_max_overflow=int(env.get("DB_MAX_OVERFLOW", "10")),
            db_pool_timeout=int(env.get("DB_POOL_TIMEOUT", "30")),
            db_gate_limit=(
                int(env["DB_GATE_LIMIT"]) if env.get("DB_GATE_LIMIT") else None
            ),
            payment_provider=provider,
            stripe_secret_key=env.get("STRIPE_SECRET_KEY", ""),
            stripe_webhook_secret=env.get("STRIPE_WEBHOOK_SECRET", ""),
            mock_secret=env.get("MOCK_SECRET", ""),
            mock_webhook_url=env.get(
                "MOCK_WEBHOOK_URL", f"{base_url}/api/checkout/webhook"
            ),
            base_url=base_url,
            admin_token=env.get("ADMIN_TOKEN", ""),
            admin_email=env.get("ADMIN_EMAIL", ""),
            resend_api_key=env.get("RESEND_API_KEY", ""),
            resend_from_email=env.get("RESEND_FROM_EMAIL", ""),
            public_logo_url=env.get("PUBLIC_LOGO_URL", ""),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
            log_json=env.get("LOG_JSON", "1") not in ("0", "false", "no"),
        )
