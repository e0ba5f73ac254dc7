"""Entry point for running the speedtest exporter."""

from __future__ import annotations

import argparse
import logging
import platform
import sys
from importlib.metadata import PackageNotFoundError, version

from speedtest_exporter import NAME, bootstrap
from speedtest_exporter.errors import SpeedtestExporterError

LOGGER = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Prometheus exporter for network speedtests")
    parser.add_argument("--config", default=None, help="Optional: Path to config.yaml")
    parser.add_argument(
        "--env",
        action="store_true",
        help="Used together with --config, expand environment variables in the config file",
    )
    parser.add_argument("--host", default=None, help="Override web server host")
    parser.add_argument("--port", type=int, default=None, help="Override web server port")
    parser.add_argument("--version", action="store_true", help="Show the version information and exit")
    return parser.parse_args(argv)


def version_info() -> str:
    try:
        package_version = version(NAME)
    except PackageNotFoundError:
        package_version = "unknown"
    return (
        f"{NAME}:\n"
        f"    Version: {package_version}\n"
        f"    Python:  {platform.python_version()}\n"
    )


def main(argv=None) -> None:
    args = parse_args(argv)

    if args.version:
        print(version_info(), end="")
        return

    try:
        context = bootstrap(args.config, expand_env=args.env)
    except (OSError, SpeedtestExporterError) as exc:
        logging.basicConfig(level=logging.INFO)
        LOGGER.error("Failed to start %s: %s", NAME, exc)
        sys.exit(1)

    context.start()
    host = args.host if args.host is not None else context.config.web.host
    port = args.port if args.port is not None else context.config.web.port
    LOGGER.info("Starting http server on %s:%s", host, port)
    try:
        context.web_app.run(host=host, port=port, threaded=True)
    finally:
        context.shutdown()


if __name__ == "__main__":
    main()
