#!/usr/bin/env python3
"""Entry-point used by systemd to launch the gpsstats bridge."""
from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from .bridge import BridgeService
from .config import dump_config, load_config
from .errors import ConfigError
from .events import SignalKind
from .logging_utils import setup_logging
from .paths import LOG_FILE
from .versioning import read_version

LOGGER = logging.getLogger(__name__)

EXIT_CONFIG_ERROR = 1

SIGNALS = {
    signal.SIGHUP: SignalKind.RELOAD,
    signal.SIGUSR1: SignalKind.DUMP_STATS,
    signal.SIGTERM: SignalKind.QUIT,
    signal.SIGINT: SignalKind.QUIT,
    signal.SIGQUIT: SignalKind.QUIT,
}


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="gpsstats",
        description="Publish GNSS receiver statistics from gpsd to an MQTT broker.",
    )
    parser.add_argument("-c", "--config", help="configuration file (default: /etc/gpsstats.cfg)")
    parser.add_argument("-d", "--debug", action="store_true", help="enable debug logging")
    parser.add_argument(
        "--log-file",
        default=None,
        help=f"also log to this rotating file (for example {LOG_FILE})",
    )
    parser.add_argument("-v", "--version", action="version", version=f"gpsstats v{read_version()}")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(debug=args.debug, log_file=Path(args.log_file) if args.log_file else None)

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        LOGGER.error("%s", exc)
        return EXIT_CONFIG_ERROR
    dump_config(config)

    service = BridgeService(config)
    try:
        service.start()
    except ConfigError as exc:
        LOGGER.error("%s", exc)
        service.loop.close()
        return EXIT_CONFIG_ERROR

    service.loop.install_signal_handlers(SIGNALS)
    try:
        service.loop.run_forever()
    except KeyboardInterrupt:  # pragma: no cover
        pass
    finally:
        service.stop()
        service.loop.close()
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
