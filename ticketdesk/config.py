from __future__ import annotations
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

from .errors import ConfigError


# ----------------------------
# Config & Constants
# ----------------------------
DEFAULT_DATABASE_URL = "sqlite:///./ticketdesk.db"
DEFAULT_TICKET_LIMIT = 400
DEFAULT_MAIL_API_URL = "https://api.brevo.com/v3/smtp/email"
TELEGRAM_API_URL = "https://api.telegram.org"


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    stripe_secret_key: str
    stripe_price_id: str
    stripe_webhook_secret: str = ""
    database_url: str = DEFAULT_DATABASE_URL
    public_url: str = "http://localhost:3000"
    ticket_limit: int = DEFAULT_TICKET_LIMIT

    mail_api_url: str = DEFAULT_MAIL_API_URL
    mail_api_key: str = ""
    mail_from: str = ""
    mail_from_name: str = "Tickets"

    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    telegram_api_url: str = TELEGRAM_API_URL

    port: int = 3000
    allowed_origins: Tuple[str, ...] = field(default_factory=lambda: ("*",))
    log_level: str = "INFO"
    log_json: bool = False

    @property
    def mail_enabled(self) -> bool:
        return bool(self.mail_api_key and self.mail_from)

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Read settings from the environment. Missing Stripe secret key or
        price id raises ConfigError: the process must not start without them.
        """
        env = os.environ if env is None else env

        secret = env.get("STRIPE_SECRET_KEY", "").strip()
        price = env.get("STRIPE_PRICE_ID", "").strip()
        missing = [
            name for name, value in (
                ("STRIPE_SECRET_KEY", secret), ("STRIPE_PRICE_ID", price)
            ) if not value
        ]
        if missing:
            raise ConfigError(
                "missing required configuration: " + ", ".join(missing)
            )

        try:
            limit = int(env.get("TICKET_LIMIT", DEFAULT_TICKET_LIMIT))
            port = int(env.get("PORT", "3000"))
        except ValueError as e:
            raise ConfigError(f"invalid numeric setting: {e}") from e
        if limit < 0:
            raise ConfigError("TICKET_LIMIT must not be negative")

        origins = tuple(
            o.strip() for o in env.get("ALLOWED_ORIGINS", "*").split(",")
            if o.strip()
        ) or ("*",)

        return cls(
            stripe_secret_key=secret,
            stripe_price_id=price,
            stripe_webhook_secret=env.get("STRIPE_WEBHOOK_SECRET", "").strip(),
            database_url=env.get("DATABASE_URL") or DEFAULT_DATABASE_URL,
            public_url=env.get(
                "PUBLIC_URL", "http://localhost:3000"
            ).rstrip("/"),
            ticket_limit=limit,
            mail_api_url=env.get("MAIL_API_URL") or DEFAULT_MAIL_API_URL,
            mail_api_key=env.get("MAIL_API_KEY", "").strip(),
            mail_from=env.get("MAIL_FROM", "").strip(),
            mail_from_name=env.get("MAIL_FROM_NAME", "Tickets"),
            telegram_bot_token=env.get("TELEGRAM_BOT_TOKEN", "").strip(),
            telegram_chat_id=env.get("TELEGRAM_CHAT_ID", "").strip(),
            port=port,
            allowed_origins=origins,
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
            log_json=_flag(env.get("LOG_JSON")),
        )
