#!/usr/bin/env python3
"""
guestbox - container entrypoint.

Brings up the bridge network, configures the DHCP appliance and boots the
guest VM. Settings come from environment variables; see RunnerConfig.

Usage:
    python -m guestbox [--log-path /var/log/startup.log] [--print-config]
"""

import argparse
import asyncio
import dataclasses
import json
import logging
import os
import sys

from guestbox.config import DEFAULT_LOG_PATH, RunnerConfig, Timings
from guestbox.errors import ConfigError
from guestbox.logs import configure_logging, flush_logging
from guestbox.models import ContainmentRequested
from guestbox.pipeline import Pipeline
from guestbox.supervisor import Supervisor


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Provision the sandbox network and boot the guest VM")
    parser.add_argument(
        "--log-path",
        default=None,
        help="Append-only log file (default: $LOG_PATH or /var/log/startup.log)",
    )
    parser.add_argument(
        "--print-config",
        action="store_true",
        help="Print the resolved configuration as JSON and exit",
    )
    return parser.parse_args(argv)


async def bootstrap(config: RunnerConfig, log: logging.Logger) -> int:
    """Run the supervised pipeline and return the process exit code."""
    pipeline = Pipeline(config, log=log)
    supervisor = Supervisor(pipeline, idle_interval=config.timings.idle_interval, log=log)
    exit_code = await supervisor.run()
    return exit_code or 0


async def contain_config_error(error: ConfigError, log: logging.Logger) -> None:
    """Log an unusable configuration and idle, as a failed pipeline would."""
    supervisor = Supervisor(None, idle_interval=Timings().idle_interval, log=log)
    supervisor.contain(
        ContainmentRequested(reason=str(error), error=error, step="Load configuration")
    )
    await supervisor.idle()


def main(argv=None) -> int:
    args = parse_args(argv)

    try:
        config = RunnerConfig.from_env()
    except ConfigError as e:
        if args.print_config:
            print(f"Invalid configuration: {e}", file=sys.stderr)
            return 2
        log = configure_logging(args.log_path or os.environ.get("LOG_PATH") or DEFAULT_LOG_PATH)
        try:
            asyncio.run(contain_config_error(e, log))
        finally:
            flush_logging()
        return 0

    if args.log_path:
        config = dataclasses.replace(config, log_path=args.log_path)

    if args.print_config:
        print(json.dumps(config.redacted(), indent=2))
        return 0

    log = configure_logging(config.log_path)
    try:
        return asyncio.run(bootstrap(config, log))
    finally:
        flush_logging()
        logging.shutdown()


if __name__ == "__main__":
    sys.exit(main())
