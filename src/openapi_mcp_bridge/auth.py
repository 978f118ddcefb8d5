"""Credentials for outgoing API requests.

Six mutually exclusive strategies are supported: none, API key, bearer
token, HTTP basic, client certificate (mutual TLS) and OAuth2 client
credentials. ``AuthConfig`` is immutable; everything that changes at runtime
(the cached OAuth2 token and its expiry, the loaded TLS material) lives in an
``AuthState`` that callers pass explicitly.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import ssl
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

import httpx

from .config import Settings, get_settings


logger = logging.getLogger(__name__)

# Tokens are renewed this long before the issuer says they expire.
TOKEN_EXPIRY_MARGIN_MS = 30_000

DEFAULT_API_KEY_HEADER = "X-API-Key"


class CertificateLoadError(Exception):
    pass


class OAuth2TokenError(Exception):
    pass


class AuthType(str, Enum):
    NONE = "none"
    API_KEY = "api_key"
    BEARER_TOKEN = "bearer_token"
    BASIC_AUTH = "basic_auth"
    CERTIFICATE = "certificate"
    OAUTH2 = "oauth2"


@dataclass(frozen=True)
class ApiKeyAuth:
    key: str
    header_name: str = DEFAULT_API_KEY_HEADER


@dataclass(frozen=True)
class BearerTokenAuth:
    token: str


@dataclass(frozen=True)
class BasicAuth:
    username: str
    password: str


@dataclass(frozen=True)
class CertificateAuth:
    cert_path: str
    key_path: str
    passphrase: Optional[str] = None


@dataclass(frozen=True)
class OAuth2Auth:
    client_id: str
    client_secret: str
    token_url: str
    scopes: Tuple[str, ...] = ()
    additional_params: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class AuthConfig:
    type: AuthType = AuthType.NONE
    api_key: Optional[ApiKeyAuth] = None
    bearer_token: Optional[BearerTokenAuth] = None
    basic_auth: Optional[BasicAuth] = None
    certificate: Optional[CertificateAuth] = None
    oauth2: Optional[OAuth2Auth] = None


@dataclass(frozen=True)
class TokenResponse:
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[float] = None
    token_type: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Any) -> "TokenResponse":
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise OAuth2TokenError("Token response did not include an access_token")
        return cls(
            access_token=str(payload["access_token"]),
            refresh_token=payload.get("refresh_token"),
            expires_in=payload.get("expires_in"),
            token_type=payload.get("token_type"),
        )


@dataclass(frozen=True)
class TlsClientMaterial:
    cert_path: str
    key_path: str
    passphrase: Optional[str] = None

    def ssl_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        try:
            context.load_cert_chain(self.cert_path, self.key_path, password=self.passphrase)
        except (OSError, ssl.SSLError) as exc:
            raise CertificateLoadError(f"Failed to initialize certificates: {exc}") from exc
        return context


@dataclass
class AuthState:
    cached_token: Optional[TokenResponse] = None
    token_expires_at_ms: int = 0
    tls: Optional[TlsClientMaterial] = None


@dataclass(frozen=True)
class AuthenticatedTransport:
    base_url: Optional[str]
    headers: Dict[str, str]
    tls: Optional[TlsClientMaterial] = None

    def verify(self) -> Union[bool, ssl.SSLContext]:
        if self.tls is None:
            return True
        return self.tls.ssl_context()


def config_from_environment(settings: Optional[Settings] = None) -> AuthConfig:
    """Pick the auth strategy from settings.

    Precedence: client certificate, OAuth2 client credentials, then the
    extra headers JSON (bearer, API key, basic), then none.
    """
    settings = settings or get_settings()

    if settings.openapi_cert_path and settings.openapi_key_path:
        logger.info("Using certificate-based authentication")
        return AuthConfig(
            type=AuthType.CERTIFICATE,
            certificate=CertificateAuth(
                cert_path=settings.openapi_cert_path,
                key_path=settings.openapi_key_path,
                passphrase=settings.openapi_cert_passphrase,
            ),
        )

    if (
        settings.openapi_oauth_client_id
        and settings.openapi_oauth_client_secret
        and settings.openapi_oauth_token_url
    ):
        logger.info("Using OAuth2 authentication")
        return AuthConfig(
            type=AuthType.OAUTH2,
            oauth2=OAuth2Auth(
                client_id=settings.openapi_oauth_client_id,
                client_secret=settings.openapi_oauth_client_secret,
                token_url=settings.openapi_oauth_token_url,
                scopes=tuple(settings.oauth_scopes()),
                additional_params=settings.oauth_additional_params(),
            ),
        )

    header_config = _config_from_headers(settings.openapi_spec_headers)
    if header_config is not None:
        return header_config

    logger.info("No authentication configured, using none")
    return AuthConfig()


def _config_from_headers(raw_headers: Optional[str]) -> Optional[AuthConfig]:
    if not raw_headers:
        return None
    try:
        headers = json.loads(raw_headers)
    except json.JSONDecodeError as exc:
        logger.warning("Failed to parse OPENAPI_SPEC_HEADERS: %s", exc)
        return None
    if not isinstance(headers, dict):
        logger.warning("OPENAPI_SPEC_HEADERS is not a JSON object; ignoring it for auth")
        return None

    authorization = ""
    for name, value in headers.items():
        if str(name).lower() == "authorization":
            authorization = str(value)
            break

    if authorization.startswith("Bearer "):
        logger.info("Using Bearer token authentication")
        return AuthConfig(
            type=AuthType.BEARER_TOKEN,
            bearer_token=BearerTokenAuth(token=authorization[len("Bearer "):]),
        )

    for name, value in headers.items():
        lowered = str(name).lower()
        if "api-key" in lowered or "apikey" in lowered:
            logger.info("Using API key authentication")
            return AuthConfig(
                type=AuthType.API_KEY,
                api_key=ApiKeyAuth(key=str(value), header_name=str(name)),
            )

    if authorization.startswith("Basic "):
        try:
            decoded = base64.b64decode(authorization[len("Basic "):], validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as exc:
            logger.warning("Ignoring malformed Basic Authorization header: %s", exc)
            return None
        username, _, password = decoded.partition(":")
        logger.info("Using Basic authentication")
        return AuthConfig(
            type=AuthType.BASIC_AUTH,
            basic_auth=BasicAuth(username=username, password=password),
        )

    return None


def state_from_config(config: AuthConfig) -> AuthState:
    state = AuthState()
    if config.type is AuthType.CERTIFICATE and config.certificate:
        state.tls = load_tls_material(config.certificate)
    logger.debug("Auth state initialized for auth type %s", config.type.value)
    return state


def load_tls_material(certificate: CertificateAuth) -> TlsClientMaterial:
    logger.debug(
        "Initializing certificates cert_path=%s key_path=%s",
        certificate.cert_path,
        certificate.key_path,
    )
    cert_path = Path(certificate.cert_path).expanduser().resolve()
    key_path = Path(certificate.key_path).expanduser().resolve()
    try:
        # Fail at startup on unreadable files rather than on the first call.
        for path in (cert_path, key_path):
            path.read_bytes()
    except OSError as exc:
        logger.error("Failed to initialize certificates: %s", exc)
        raise CertificateLoadError(f"Failed to initialize certificates: {exc}") from exc

    logger.info("Certificate initialization successful")
    return TlsClientMaterial(
        cert_path=str(cert_path),
        key_path=str(key_path),
        passphrase=certificate.passphrase,
    )


async def get_oauth2_token(
    config: AuthConfig,
    state: AuthState,
    http_client: Optional[httpx.AsyncClient] = None,
    timeout_seconds: float = 30,
) -> Optional[str]:
    """Return a live OAuth2 access token, fetching one when needed.

    A cached token is reused until ``token_expires_at_ms``. Otherwise a
    refresh-token grant is attempted when the cached response carried a
    refresh token, else a client-credentials grant. Failures are logged and
    yield ``None`` with ``state`` left as it was.
    """
    oauth = config.oauth2
    if oauth is None:
        logger.error("OAuth2 configuration not found")
        return None

    now = _now_ms()
    if state.cached_token is not None and now < state.token_expires_at_ms:
        logger.debug("Using existing valid OAuth token")
        return state.cached_token.access_token

    refresh_token = state.cached_token.refresh_token if state.cached_token else None
    try:
        token = await _request_token(oauth, refresh_token, http_client, timeout_seconds)
    except OAuth2TokenError as exc:
        logger.error("Failed to obtain OAuth token from %s: %s", oauth.token_url, exc)
        return None

    state.cached_token = token
    if token.expires_in:
        state.token_expires_at_ms = now + int(float(token.expires_in) * 1000) - TOKEN_EXPIRY_MARGIN_MS

    logger.info(
        "New OAuth token obtained expires_in=%s has_refresh_token=%s",
        token.expires_in,
        bool(token.refresh_token),
    )
    return token.access_token


async def _request_token(
    oauth: OAuth2Auth,
    refresh_token: Optional[str],
    http_client: Optional[httpx.AsyncClient],
    timeout_seconds: float,
) -> TokenResponse:
    data: Dict[str, str] = {"grant_type": "client_credentials"}
    if oauth.scopes:
        data["scope"] = " ".join(oauth.scopes)
    data.update(oauth.additional_params)
    if refresh_token:
        data["grant_type"] = "refresh_token"
        data["refresh_token"] = refresh_token

    headers = {
        "Authorization": f"Basic {_basic_credentials(oauth.client_id, oauth.client_secret)}",
        "Content-Type": "application/x-www-form-urlencoded",
    }

    logger.debug("Requesting new OAuth token grant_type=%s", data["grant_type"])
    try:
        if http_client is not None:
            response = await http_client.post(oauth.token_url, data=data, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=timeout_seconds) as client:
                response = await client.post(oauth.token_url, data=data, headers=headers)
        response.raise_for_status()
        payload = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        raise OAuth2TokenError(str(exc)) from exc

    return TokenResponse.from_payload(payload)


async def headers_for(
    config: AuthConfig,
    state: AuthState,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Dict[str, str]:
    logger.debug("Getting auth headers for auth type %s", config.type.value)

    if config.type is AuthType.API_KEY and config.api_key:
        header_name = config.api_key.header_name or DEFAULT_API_KEY_HEADER
        return {header_name: config.api_key.key}
    if config.type is AuthType.BEARER_TOKEN and config.bearer_token:
        return {"Authorization": f"Bearer {config.bearer_token.token}"}
    if config.type is AuthType.BASIC_AUTH and config.basic_auth:
        credentials = _basic_credentials(config.basic_auth.username, config.basic_auth.password)
        return {"Authorization": f"Basic {credentials}"}
    if config.type is AuthType.OAUTH2:
        token = await get_oauth2_token(config, state, http_client)
        if token:
            return {"Authorization": f"Bearer {token}"}
        return {}
    # Certificates travel in the TLS handshake, not in headers.
    return {}


async def authenticated_transport(
    config: AuthConfig,
    state: AuthState,
    base_url: Optional[str] = None,
) -> AuthenticatedTransport:
    headers = await headers_for(config, state)
    logger.debug(
        "Transport configured with auth base_url=%s has_headers=%s has_certificate=%s",
        base_url,
        bool(headers),
        state.tls is not None,
    )
    return AuthenticatedTransport(base_url=base_url, headers=headers, tls=state.tls)


def _basic_credentials(username: str, password: str) -> str:
    return base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")


def _now_ms() -> int:
    return int(time.time() * 1000)
