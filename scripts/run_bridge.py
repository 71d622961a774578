"""Run the Polymarket live-data bridge.

Connects to the Polymarket live-data WebSocket, subscribes to activity
trades and forwards every validated trade to the named pipe read by the
analysis process. Runs until SIGINT/SIGTERM, or until reconnect attempts
are exhausted.

Usage:
    python -m scripts.run_bridge
    python -m scripts.run_bridge --pipe-path /tmp/pipe_1 --log-level DEBUG
    python -m scripts.run_bridge --with-crypto-prices

Configuration is read from ``POLYMARKET_*`` environment variables (and an
optional ``.env`` file in the project root); command-line flags override
them:

    POLYMARKET_DATA_SOURCE, POLYMARKET_WS_URL, POLYMARKET_PING_INTERVAL,
    POLYMARKET_RECONNECT_INTERVAL, POLYMARKET_MAX_RECONNECT_ATTEMPTS,
    POLYMARKET_SHUTDOWN_TIMEOUT, POLYMARKET_OPEN_TIMEOUT,
    POLYMARKET_PIPE_PATH

The pipe must exist (``mkfifo /tmp/pipe_1``) and have a reader attached;
opening it blocks until the reader connects.

Exit codes:
    0: Shut down on request
    1: Invalid configuration or reconnect attempts exhausted
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import Mapping, Sequence

from pydantic import ValidationError

from core.events import ACTIVITY_TRADES, CRYPTO_PRICES, SubscriptionTopic
from core.metrics import format_metrics_report
from infra.sink import PipeEventSink
from infra.subscription import SubscriptionDispatcher
from infra.supervisor import BridgeConfig, ConnectionSupervisor

logger: logging.Logger = logging.getLogger(__name__)

_PROJECT_ROOT: str = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

ENV_PREFIX: str = "POLYMARKET_"

# BridgeConfig field -> environment variable
_ENV_FIELDS: dict[str, str] = {
    name: ENV_PREFIX + name.upper() for name in BridgeConfig.model_fields
}

_SHUTDOWN_SIGNALS: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)


def load_env(path: str | None = None) -> None:
    """Load a .env file into os.environ (simple key=value parser).

    Existing environment variables win over values in the file.
    """
    env_path: str = path or os.path.join(_PROJECT_ROOT, ".env")
    if not os.path.exists(env_path):
        return
    with open(env_path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            # Strip optional 'export ' prefix
            if line.startswith("export "):
                line = line[7:]
            if "=" not in line:
                continue
            key, _, value = line.partition("=")
            value = value.strip().strip("'\"")
            os.environ.setdefault(key.strip(), value)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command-line flags. Unset flags are ``None``."""
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Forward Polymarket activity trades to a named pipe",
    )
    parser.add_argument(
        "--ws-url",
        type=str,
        default=None,
        help="WebSocket endpoint (default: wss://ws-live-data.polymarket.com)",
    )
    parser.add_argument(
        "--pipe-path",
        type=str,
        default=None,
        help="Named pipe to write records to (default: /tmp/pipe_1)",
    )
    parser.add_argument(
        "--ping-interval",
        type=float,
        default=None,
        help="Seconds between heartbeat probes (default: 5.0)",
    )
    parser.add_argument(
        "--reconnect-interval",
        type=float,
        default=None,
        help="Base reconnect delay in seconds (default: 2.0)",
    )
    parser.add_argument(
        "--max-reconnect-attempts",
        type=int,
        default=None,
        help="Reconnect attempts before giving up (default: 5)",
    )
    parser.add_argument(
        "--shutdown-timeout",
        type=float,
        default=None,
        help="Seconds to wait for a clean close on shutdown (default: 5.0)",
    )
    parser.add_argument(
        "--with-crypto-prices",
        action="store_true",
        help="Also subscribe to crypto price updates (logged, not forwarded)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    return parser.parse_args(argv)


def build_config(
    args: argparse.Namespace,
    environ: Mapping[str, str] | None = None,
) -> BridgeConfig:
    """Build the bridge config from environment variables and flags.

    Args:
        args: Parsed flags. Attributes that are ``None`` or missing are
            ignored.
        environ: Environment mapping. Defaults to ``os.environ``.

    Raises:
        pydantic.ValidationError: If a value is out of range or the URL
            scheme is not ws/wss.
    """
    env: Mapping[str, str] = os.environ if environ is None else environ
    values: dict[str, object] = {}
    for field_name, env_name in _ENV_FIELDS.items():
        if env.get(env_name):
            values[field_name] = env[env_name]
    for field_name in _ENV_FIELDS:
        override: object = getattr(args, field_name, None)
        if override is not None:
            values[field_name] = override
    return BridgeConfig(**values)


def select_topics(args: argparse.Namespace) -> tuple[SubscriptionTopic, ...]:
    """Topics to subscribe to on every connect."""
    if getattr(args, "with_crypto_prices", False):
        return (ACTIVITY_TRADES, CRYPTO_PRICES)
    return (ACTIVITY_TRADES,)


async def run_bridge(
    config: BridgeConfig,
    topics: Sequence[SubscriptionTopic] = (ACTIVITY_TRADES,),
) -> int:
    """Run the bridge until shutdown or reconnect exhaustion.

    Returns:
        Exit code: 0 on requested shutdown, 1 if reconnects were exhausted.
    """
    supervisor: ConnectionSupervisor = ConnectionSupervisor(
        config=config,
        sink=PipeEventSink(config.pipe_path),
        dispatcher=SubscriptionDispatcher(topics=topics),
    )

    loop: asyncio.AbstractEventLoop = asyncio.get_running_loop()
    shutdown_tasks: list[asyncio.Task[None]] = []

    def _request_shutdown(sig: signal.Signals) -> None:
        logger.info("Shutting down (received %s)...", sig.name)
        shutdown_tasks.append(loop.create_task(supervisor.shutdown()))

    for sig in _SHUTDOWN_SIGNALS:
        loop.add_signal_handler(sig, _request_shutdown, sig)

    try:
        await supervisor.start()
        await supervisor.wait_closed()
        if supervisor.failed:
            await supervisor.shutdown()
    finally:
        for sig in _SHUTDOWN_SIGNALS:
            loop.remove_signal_handler(sig)
        if shutdown_tasks:
            await asyncio.gather(*shutdown_tasks)

        for line in format_metrics_report(supervisor.metrics()):
            logger.info("%s", line)

    if supervisor.failed:
        logger.error("Bridge stopped: reconnect attempts exhausted")
        return 1
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Run the bridge.

    Returns:
        Process exit code.
    """
    args: argparse.Namespace = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    load_env()

    try:
        config: BridgeConfig = build_config(args)
    except ValidationError as exc:
        logger.error("Invalid configuration:\n%s", exc)
        return 1

    logger.info(
        "Starting bridge: source=%s url=%s pipe=%s",
        config.data_source,
        config.ws_url,
        config.pipe_path,
    )
    return asyncio.run(run_bridge(config, topics=select_topics(args)))


if __name__ == "__main__":
    sys.exit(main())
