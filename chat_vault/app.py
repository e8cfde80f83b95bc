"""
Chat Vault application factory and command line entry point.

The encryption configuration is built before anything else; a missing or
malformed ``ENCRYPTION_KEY`` stops the process before a listener opens.
"""
import sys
import asyncio
import logging
from typing import Any, Optional

import click
import asyncpg
import redis.asyncio as aioredis
from aiohttp import web

from .exceptions import ConfigurationError
from .chat import MessagePipeline
from .handlers import credentials_key, error_middleware, pipeline_key, setup_routes
from .providers import BackendRegistry
from .schema import create_schema
from .vault import (
    CredentialStore,
    EncryptionConfig,
    EnvelopeCipher,
    ServerConfig,
    generate_encryption_key,
    rotate_encryption_key,
)
from .version import __version__

logger = logging.getLogger("chat_vault")


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(
    config: EncryptionConfig,
    db_pool: Any,
    redis: Any = None,
    backends: Optional[BackendRegistry] = None,
    middlewares: tuple = (),
) -> web.Application:
    """Wire the cipher, stores and routes into an aiohttp application.

    Args:
        config: Validated encryption configuration.
        db_pool: asyncpg-compatible connection pool.
        redis: Optional Redis client for the API key envelope cache.
        backends: Completion backends; mock replies when omitted.
        middlewares: Extra middlewares run before the error middleware,
            typically the session middleware setting the user id.
    """
    cipher = EnvelopeCipher(config)
    credentials = CredentialStore(
        cipher, db_pool, redis=redis, cache_ttl=config.api_key_cache_ttl,
    )
    app = web.Application(middlewares=[*middlewares, error_middleware])
    app[credentials_key] = credentials
    app[pipeline_key] = MessagePipeline(cipher, db_pool, credentials, backends)
    setup_routes(app)
    return app


async def build_app(config: EncryptionConfig, server: ServerConfig) -> web.Application:
    """Open the database pool and Redis client, then build the application."""
    db_pool = await asyncpg.create_pool(server.dsn)
    await create_schema(db_pool)
    redis = aioredis.from_url(server.redis_url) if server.redis_url else None

    app = create_app(config, db_pool, redis=redis)

    async def _close(app: web.Application) -> None:
        await db_pool.close()
        if redis is not None:
            await redis.aclose()

    app.on_cleanup.append(_close)
    logger.info(
        "Chat Vault %s ready (redis cache %s)",
        __version__, "enabled" if redis is not None else "disabled",
    )
    return app


def _load_configs() -> tuple[EncryptionConfig, ServerConfig]:
    try:
        return EncryptionConfig.from_env(), ServerConfig.from_env()
    except ConfigurationError as err:
        logger.critical("Refusing to start: %s", err)
        raise SystemExit(2) from None


@click.group()
@click.version_option(__version__)
def cli():
    """Chat Vault server and key management."""
    pass


@cli.command()
@click.option("--host", default=None, help="Override CHAT_VAULT_HOST")
@click.option("--port", default=None, type=int, help="Override CHAT_VAULT_PORT")
def serve(host: Optional[str], port: Optional[int]):
    """Run the HTTP API."""
    setup_logging()
    config, server = _load_configs()
    logging.getLogger().setLevel(server.log_level)
    web.run_app(
        build_app(config, server),
        host=host or server.host,
        port=port or server.port,
    )


@cli.command("generate-key")
def generate_key():
    """Print a fresh 64-character hex ENCRYPTION_KEY."""
    click.echo(generate_encryption_key())


@cli.command("rotate-key")
@click.option("--new-key", envvar="NEW_ENCRYPTION_KEY", required=True,
              help="Replacement key (hex); defaults to $NEW_ENCRYPTION_KEY")
@click.option("--batch-size", default=100, show_default=True, type=int)
def rotate_key(new_key: str, batch_size: int):
    """Re-seal stored envelopes from ENCRYPTION_KEY to the new key."""
    setup_logging()
    config, server = _load_configs()
    try:
        new_config = EncryptionConfig.from_hex(new_key)
    except ConfigurationError as err:
        click.echo(f"Error: invalid new key: {err}", err=True)
        sys.exit(2)

    async def _run() -> dict:
        db_pool = await asyncpg.create_pool(server.dsn)
        redis = aioredis.from_url(server.redis_url) if server.redis_url else None
        try:
            return await rotate_encryption_key(
                db_pool, EnvelopeCipher(config), EnvelopeCipher(new_config),
                batch_size=batch_size, redis=redis,
            )
        finally:
            await db_pool.close()
            if redis is not None:
                await redis.aclose()

    stats = asyncio.run(_run())
    for table, counts in stats.items():
        click.echo(
            f"{table}: {counts['rotated']} rotated, {counts['skipped']} skipped, "
            f"{counts['errors']} errors of {counts['total']}"
        )
    if any(counts["errors"] for counts in stats.values()):
        sys.exit(1)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
