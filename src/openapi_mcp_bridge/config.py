"""Configuration for the OpenAPI MCP bridge."""

from __future__ import annotations

import json
from functools import lru_cache
from typing import Any, Dict, List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    pass


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False)

    service_name: str = Field(default="openapi-mcp-bridge")

    openapi_spec_url: Optional[str] = Field(default=None)
    openapi_spec_base_url: Optional[str] = Field(default=None)
    openapi_spec_headers: str = Field(default="{}")
    openapi_request_timeout_seconds: float = Field(default=30)

    openapi_cert_path: Optional[str] = Field(default=None)
    openapi_key_path: Optional[str] = Field(default=None)
    openapi_cert_passphrase: Optional[str] = Field(default=None)

    openapi_oauth_client_id: Optional[str] = Field(default=None)
    openapi_oauth_client_secret: Optional[str] = Field(default=None)
    openapi_oauth_token_url: Optional[str] = Field(default=None)
    openapi_oauth_scopes: Optional[str] = Field(default=None)
    openapi_oauth_additional_params: Optional[str] = Field(default=None)

    log_level: str = Field(default="INFO")
    log_dir: Optional[str] = Field(default=None)
    verbose: bool = Field(default=False)

    def validate_startup(self) -> None:
        if not self.openapi_spec_url:
            raise ConfigurationError(
                "OpenAPI spec URL/path is required. Provide it via --spec or OPENAPI_SPEC_URL"
            )
        if not self.openapi_spec_base_url:
            raise ConfigurationError(
                "Base URL is required. Provide it via --base-url or OPENAPI_SPEC_BASE_URL"
            )
        if bool(self.openapi_cert_path) != bool(self.openapi_key_path):
            raise ConfigurationError(
                "Certificate-based authentication requires both --cert-path and --key-path"
            )
        oauth_values = (
            self.openapi_oauth_client_id,
            self.openapi_oauth_client_secret,
            self.openapi_oauth_token_url,
        )
        if any(oauth_values) and not all(oauth_values):
            raise ConfigurationError(
                "OAuth2 authentication requires --oauth-client-id, --oauth-client-secret "
                "and --oauth-token-url"
            )

    def extra_headers(self) -> Dict[str, str]:
        try:
            headers = json.loads(self.openapi_spec_headers or "{}")
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Invalid headers JSON: {exc}") from exc
        if not isinstance(headers, dict):
            raise ConfigurationError("Headers must be a JSON object")
        return {str(key): str(value) for key, value in headers.items()}

    def oauth_scopes(self) -> List[str]:
        if not self.openapi_oauth_scopes:
            return []
        return [item.strip() for item in self.openapi_oauth_scopes.split(",") if item.strip()]

    def oauth_additional_params(self) -> Dict[str, str]:
        if not self.openapi_oauth_additional_params:
            return {}
        try:
            params: Any = json.loads(self.openapi_oauth_additional_params)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Invalid OAuth additional params JSON: {exc}") from exc
        if not isinstance(params, dict):
            raise ConfigurationError("OAuth additional params must be a JSON object")
        return {str(key): str(value) for key, value in params.items()}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
