"""
GCProbe: process entry point.

Runs one staged probe (login → session → GC handshake → profile request)
and exits 0 only if every stage answered in time.

Usage:
    gcprobe [--config config.yaml] [--format text|json]

Secrets can come from the environment instead of the file:
    GCPROBE_USERNAME, GCPROBE_PASSWORD, GCPROBE_SHARED_SECRET, GCPROBE_TARGET_ID
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Sequence

import structlog
import yaml
from dotenv import load_dotenv

from gcprobe.clients.totp import TotpError
from gcprobe.config import EXAMPLE_CONFIG, ConfigurationError, GCProbeConfig, load_config
from gcprobe.diagnostics.service import ProbeService, build_credentials
from gcprobe.primitives.common import new_id
from gcprobe.telemetry.logging import setup_logging

EXIT_STARTUP_ERROR = 1

logger = structlog.get_logger()


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="gcprobe",
        description="Staged soft-ban diagnostic for the game coordinator",
    )
    parser.add_argument(
        "--config",
        default="config.yaml",
        help="Path to a YAML or JSON config file (default: config.yaml)",
    )
    parser.add_argument(
        "--format",
        choices=["text", "json"],
        default=None,
        help="Report format; overrides report.format from the config",
    )
    return parser.parse_args(argv)


def _startup_error(message: str, show_example: bool = False) -> int:
    print(f"[ERROR] {message}", file=sys.stderr)
    if show_example:
        print("[*] Expected configuration, for example:", file=sys.stderr)
        print(yaml.safe_dump(EXAMPLE_CONFIG, sort_keys=False), file=sys.stderr)
    return EXIT_STARTUP_ERROR


async def main(config: GCProbeConfig, run_id: str) -> int:
    try:
        credentials = build_credentials(config)
    except TotpError as exc:
        logger.error("auth_code_generation_failed", error=str(exc))
        return _startup_error(f"Failed to generate 2FA code: {exc}. Check your shared secret.")

    service = ProbeService(config, credentials, run_id=run_id)
    return await service.run()


def cli(argv: Sequence[str] | None = None) -> int:
    load_dotenv()
    args = _parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigurationError as exc:
        return _startup_error(str(exc), show_example=bool(exc.fields))

    if args.format:
        config.report.format = args.format

    run_id = new_id()
    setup_logging(config.logging, run_id=run_id)
    logger.info("gcprobe_starting", environment=config.environment, config_path=args.config)
    return asyncio.run(main(config, run_id))


if __name__ == "__main__":
    sys.exit(cli())
