"""CLI entry point for the Star Pulse relay.

Loads the store and relay configuration, connects to PostgreSQL, starts
the optional Prometheus endpoint and serves until SIGINT/SIGTERM.

Examples:
    ```bash
    python -m starpulse
    starpulse --config config/services/relay.yaml --log-level DEBUG
    DB_PASSWORD=secret starpulse --store-config /etc/starpulse/store.yaml
    ```
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from starpulse.core import EventStore, start_metrics_server
from starpulse.core.exceptions import ConnectionPoolError
from starpulse.core.logger import Logger, StructuredFormatter
from starpulse.core.yaml import load_yaml
from starpulse.models.constants import ServiceName
from starpulse.services.relay import Relay, RelayConfig


CONFIG_BASE = Path("config")
STORE_CONFIG = CONFIG_BASE / "store.yaml"
RELAY_CONFIG = CONFIG_BASE / "services" / "relay.yaml"

logger = Logger("cli")


async def run_relay(store: EventStore, relay_dict: dict[str, Any]) -> int:
    """Run the relay until a shutdown signal arrives.

    Returns:
        Exit code: 0 on clean shutdown, 1 on failure.
    """
    relay = Relay.from_dict(relay_dict, store=store) if relay_dict else Relay(store=store)

    metrics_config = relay.config.metrics
    metrics_server = await start_metrics_server(metrics_config)
    if metrics_config.enabled:
        logger.info(
            "metrics_server_started",
            host=metrics_config.host,
            port=metrics_config.port,
            path=metrics_config.path,
        )

    def handle_signal(sig: signal.Signals) -> None:
        logger.info("shutdown_signal", signal=sig.name)
        relay.request_shutdown()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        async with relay:
            await relay.run_forever()
        return 0
    except Exception as e:  # Intentionally broad: CLI error boundary
        logger.error("relay_failed", error=str(e), error_type=type(e).__name__)
        return 1
    finally:
        await metrics_server.stop()
        if metrics_config.enabled:
            logger.info("metrics_server_stopped")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="starpulse",
        description="Star Pulse event relay",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=RELAY_CONFIG,
        help=f"Relay config path (default: {RELAY_CONFIG})",
    )
    parser.add_argument(
        "--store-config",
        type=Path,
        default=STORE_CONFIG,
        help=f"Event store config path (default: {STORE_CONFIG})",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Log level (default: INFO)",
    )
    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    """Install ``StructuredFormatter`` on the root handler.

    Records from uvicorn and asyncpg then share the
    ``level name message key=value ...`` layout.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, level))


def _load_yaml_dict(path: Path) -> dict[str, Any]:
    """Load *path* as a dict, or ``{}`` with a warning if it does not exist."""
    if not path.exists():
        logger.warning("config_not_found", path=str(path))
        return {}
    return load_yaml(str(path))


def _apply_pool_overrides(store_dict: dict[str, Any], pool_overrides: dict[str, Any] | None) -> None:
    """Merge a ``pool`` section from the relay config into the store config.

    ``application_name`` defaults to the service name.
    """
    pool = store_dict.setdefault("pool", {})
    server_settings = pool.setdefault("server_settings", {})
    server_settings.setdefault("application_name", str(ServiceName.RELAY))

    if not pool_overrides:
        return
    for section, values in pool_overrides.items():
        if isinstance(values, dict):
            pool.setdefault(section, {}).update(values)
        else:
            pool[section] = values


async def main(argv: list[str] | None = None) -> int:
    """Parse arguments, connect the store and run the relay."""
    args = parse_args(argv)
    setup_logging(args.log_level)

    store_dict = _load_yaml_dict(args.store_config)
    relay_dict = _load_yaml_dict(args.config)
    _apply_pool_overrides(store_dict, relay_dict.pop("pool", None))

    try:
        store = EventStore.from_dict(store_dict)
        RelayConfig.model_validate(relay_dict)
    except ValidationError as e:
        logger.error("invalid_configuration", error=str(e))
        return 2

    try:
        async with store:
            return await run_relay(store, relay_dict)
    except ConnectionPoolError as e:
        logger.error("connection_failed", error=str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("interrupted")
        return 130


def cli() -> None:
    """Synchronous entry point for console_scripts."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
