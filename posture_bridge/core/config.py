from functools import lru_cache
from typing import List, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    app_name: str = "Device Posture Bridge"
    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # Microsoft Defender client-credentials app
    microsoft_tenant_id: str = Field(...)
    microsoft_client_id: str = Field(...)
    microsoft_client_secret: str = Field(...)
    defender_login_host: str = Field(default="https://login.microsoftonline.com")
    defender_token_scope: str = Field(default="https://api.securitycenter.microsoft.com/.default")
    defender_machines_url: str = Field(default="https://api.securitycenter.microsoft.com/api/machines")
    token_refresh_skew_seconds: int = Field(default=300)
    token_cache_key: str = Field(default="MICROSOFT_DEFENDER_TOKEN")
    token_cache_expiry_key: str = Field(default="MICROSOFT_DEFENDER_TOKEN_EXPIRY")
    http_timeout_seconds: float = Field(default=10.0)

    # Cloudflare Access assertion
    team_domain: str = Field(...)
    policy_aud: str = Field(...)
    access_jwks_url: Optional[str] = Field(default=None)
    access_jwt_algorithms: List[str] = Field(default_factory=lambda: ["RS256"])
    access_jwt_issuer: Optional[str] = Field(default=None)
    jwks_cache_ttl_seconds: int = Field(default=300)
    jwt_clock_skew_seconds: int = Field(default=30)

    # shared token cache; in-process when unset
    redis_url: Optional[str] = Field(default=None)

    @model_validator(mode="after")
    def require_tls_redis(self) -> "Settings":
        if self.redis_url and not self.redis_url.startswith("rediss://") and self.environment != "development":
            raise ValueError("Redis URL must use TLS (rediss://) outside development")
        return self

    @property
    def token_endpoint(self) -> str:
        return f"{self.defender_login_host.rstrip('/')}/{self.microsoft_tenant_id}/oauth2/v2.0/token"

    @property
    def jwks_url(self) -> str:
        return self.access_jwks_url or f"https://{self.team_domain}/cdn-cgi/access/certs"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
