"""CLI entry point for the OpenAPI MCP bridge."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Any, Dict, List, Optional

from .auth import CertificateLoadError, config_from_environment
from .config import ConfigurationError, Settings
from .logging import configure_logging, redact_payload
from .openapi import SpecLoadError
from .schema import UnsupportedTypeError
from .server import build_server

logger = logging.getLogger(__name__)

# CLI flag destination -> settings field
_CLI_FIELDS = {
    "spec": "openapi_spec_url",
    "base_url": "openapi_spec_base_url",
    "headers": "openapi_spec_headers",
    "log_level": "log_level",
    "cert_path": "openapi_cert_path",
    "key_path": "openapi_key_path",
    "cert_passphrase": "openapi_cert_passphrase",
    "oauth_client_id": "openapi_oauth_client_id",
    "oauth_client_secret": "openapi_oauth_client_secret",
    "oauth_token_url": "openapi_oauth_token_url",
    "oauth_scopes": "openapi_oauth_scopes",
}

_EPILOG = """\
Environment variables:
  OPENAPI_SPEC_URL              Path or URL to OpenAPI spec (required if --spec not set)
  OPENAPI_SPEC_BASE_URL         Base URL for API requests (required if --base-url not set)
  OPENAPI_SPEC_HEADERS          Additional headers as JSON
  OPENAPI_CERT_PATH             Path to client certificate file
  OPENAPI_KEY_PATH              Path to client key file
  OPENAPI_CERT_PASSPHRASE       Passphrase for certificate
  OPENAPI_OAUTH_CLIENT_ID       OAuth client ID
  OPENAPI_OAUTH_CLIENT_SECRET   OAuth client secret
  OPENAPI_OAUTH_TOKEN_URL       OAuth token endpoint URL
  OPENAPI_OAUTH_SCOPES          OAuth scopes (comma-separated)
  LOG_LEVEL                     Log level (error, warning, info, debug)
  LOG_DIR                       Directory for rotating log files
"""


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="openapi-mcp-bridge",
        description="Expose an OpenAPI described REST API as MCP tools over stdio",
        epilog=_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--spec", help="Path or URL of the OpenAPI specification")
    parser.add_argument("--base-url", help="Base URL for API requests")
    parser.add_argument("--headers", help="Additional headers as a JSON object")
    parser.add_argument("--verbose", action="store_true", help="Log the resolved startup configuration")
    parser.add_argument("--log-level", help="Log level (error, warning, info, debug)")

    auth = parser.add_argument_group("authentication")
    auth.add_argument("--cert-path", help="Path to client certificate file")
    auth.add_argument("--key-path", help="Path to client key file")
    auth.add_argument("--cert-passphrase", help="Passphrase for the client key")
    auth.add_argument("--oauth-client-id", help="OAuth client ID")
    auth.add_argument("--oauth-client-secret", help="OAuth client secret")
    auth.add_argument("--oauth-token-url", help="OAuth token endpoint URL")
    auth.add_argument("--oauth-scopes", help="Comma-separated list of OAuth scopes")
    return parser.parse_args(argv)


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Build settings where CLI flags take precedence over the environment."""
    overrides: Dict[str, Any] = {}
    for dest, field in _CLI_FIELDS.items():
        value = getattr(args, dest, None)
        if value is not None:
            overrides[field] = value
    if getattr(args, "verbose", False):
        overrides["verbose"] = True
    return Settings(**overrides)


async def _run(settings: Settings) -> None:
    if settings.verbose:
        startup_config = redact_payload(settings.model_dump())
        startup_config["openapi_spec_headers"] = redact_payload(settings.extra_headers())
        logger.info(
            "Starting server with config %s auth_type=%s",
            startup_config,
            config_from_environment(settings).type.value,
        )
    mcp = await build_server(settings)
    logger.info("Server started, serving MCP over stdio")
    await mcp.run_stdio_async()


def main(argv: Optional[List[str]] = None) -> None:
    settings = settings_from_args(parse_args(argv))
    configure_logging(settings.log_level, settings.log_dir)
    logger.info("Starting OpenAPI to MCP server")

    try:
        asyncio.run(_run(settings))
    except (ConfigurationError, SpecLoadError, CertificateLoadError, UnsupportedTypeError) as exc:
        logger.error("Fatal error during server startup: %s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
