"""Application configuration via environment variables.

Uses pydantic-settings to load config from env vars. Variable names match
the ones Bento deployments already set (REDIS_CONNECTION, JSON_MESSAGES,
BENTO_AUTHZ_SERVICE_URL, ...), so there is no prefix.

Learn: Settings is frozen. create_app() builds it once and hands the same
instance to every component; nothing else reads the environment.
"""

from typing import Annotated, Literal, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode

AuthStrategy = Literal["none", "authz", "openid"]

REDACTED = "***"


def redact_url(url: str) -> str:
    """Mask the password in a connection URL before it is logged or printed.

    Covers both redis://user:pw@host and unix:///path?password=pw forms.
    """
    parts = urlsplit(url)
    params = parse_qsl(parts.query, keep_blank_values=True)
    has_query_password = any(key == "password" for key, _ in params)
    if parts.password is None and not has_query_password:
        return url

    netloc = parts.netloc
    if parts.password is not None:
        userinfo, _, hostinfo = netloc.rpartition("@")
        username = userinfo.split(":", 1)[0]
        netloc = f"{username}:{REDACTED}@{hostinfo}"

    query = parts.query
    if has_query_password:
        query = urlencode(
            [(key, REDACTED if key == "password" else value) for key, value in params],
            safe="*",
        )

    return urlunsplit(parts._replace(netloc=netloc, query=query))


class Settings(BaseSettings):
    """All relay configuration."""

    # Logging
    bento_debug: bool = False
    bento_environment: str = "prod"

    # Delivery mode: True → JSON-decode payloads, False → pass raw strings
    json_messages: bool = True

    # Redis
    redis_connection: str = "redis://localhost:6379"
    redis_subscribe_pattern: str = "bento.*"

    # Server
    service_id: Optional[str] = None
    service_url_base_path: str = ""
    ws_path: str = "/ws"
    service_host: str = "0.0.0.0"
    # Port number or unix socket path
    service_listen_on: str = Field(
        default="8080",
        validation_alias=AliasChoices("service_listen_on", "service_socket"),
    )

    # CORS (semicolon-separated in the environment)
    cors_origins: Annotated[list[str], NoDecode] = []

    # Auth
    auth_strategy: AuthStrategy = "authz"
    bento_authz_service_url: Optional[str] = None
    authz_resource: dict = {"everything": True}
    authz_permission: str = "view:private_portal"
    openid_config_url: Optional[str] = None
    openid_token_audience: str = "account"
    openid_config_expiry: int = 3600  # seconds, discovery cache lifetime
    auth_timeout_seconds: float = 10.0

    # Fan-out
    client_queue_size: int = 256

    model_config = {"frozen": True, "populate_by_name": True}

    @field_validator("cors_origins", mode="before")
    @classmethod
    def split_cors_origins(cls, v):
        if isinstance(v, str):
            return [o.strip() for o in v.split(";") if o.strip()]
        return v

    @field_validator("service_url_base_path")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("client_queue_size")
    @classmethod
    def positive_queue_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError("CLIENT_QUEUE_SIZE must be at least 1")
        return v

    @property
    def listen_port(self) -> Optional[int]:
        """Port to bind, or None when listening on a unix socket."""
        return int(self.service_listen_on) if self.service_listen_on.isdigit() else None

    @property
    def auth_authority_configured(self) -> bool:
        if self.auth_strategy == "authz":
            return bool(self.bento_authz_service_url)
        if self.auth_strategy == "openid":
            return bool(self.openid_config_url)
        return True

    def summary(self) -> dict:
        """Settings as logged at startup, with secrets masked."""
        return {
            "json_messages": self.json_messages,
            "redis_connection": redact_url(self.redis_connection),
            "redis_subscribe_pattern": self.redis_subscribe_pattern,
            "service_url_base_path": self.service_url_base_path,
            "ws_path": self.ws_path,
            "service_listen_on": self.service_listen_on,
            "cors_origins": self.cors_origins,
            "auth_strategy": self.auth_strategy,
            "bento_authz_service_url": self.bento_authz_service_url,
            "openid_config_url": self.openid_config_url,
        }
