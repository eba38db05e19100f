#!/usr/bin/env python3
"""
UniFi discovery - CLI entry point

Usage:
    unifi-discovery [options]
    python -m unifi_discovery [options]
"""

import argparse
import logging
import sys
from typing import List, Mapping, Optional

import uvicorn

from . import __version__
from .api_client import UnifiApiClient
from .config import Settings
from .server import create_app


LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s'


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Send unifi_discovery.* records to stdout; uvicorn keeps its own handlers"""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))

    logger = logging.getLogger('unifi_discovery')
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.handlers = [handler]
    logger.propagate = False
    return logger


def build_parser(defaults: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="unifi-discovery",
        description="Grafana Alloy discovery.http targets from the UniFi Network API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  unifi-discovery --unifi-host 192.168.1.1 --api-key KEY
  unifi-discovery --port 9000 --request-timeout 10

Every flag can also be set through the environment (see unifi_discovery.config).
        """
    )
    parser.add_argument('--port', type=int, default=defaults.port,
                        help=f'port to serve traffic on (default: {defaults.port})')
    parser.add_argument('--listen-host', default=defaults.listen_host,
                        help=f'bind address (default: {defaults.listen_host})')
    parser.add_argument('--unifi-host', default=defaults.unifi_host,
                        help=f'host to query (default: {defaults.unifi_host})')
    parser.add_argument('--api-key', default=defaults.api_key,
                        help='api key')
    parser.add_argument('--api-secret-arn', default=defaults.api_secret_arn,
                        help='Secrets Manager ARN to read the api key from')
    parser.add_argument('--request-timeout', type=float, default=defaults.request_timeout,
                        help=f'deadline in seconds for one discovery request (default: {defaults.request_timeout})')
    parser.add_argument('--verify-tls', action='store_true', default=defaults.verify_tls,
                        help='verify the UniFi console certificate')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        default=defaults.log_level,
                        help=f'Log level (default: {defaults.log_level})')
    parser.add_argument('--version', action='version', version=f'unifi-discovery {__version__}')
    return parser


def parse_settings(argv: Optional[List[str]] = None,
                   environ: Optional[Mapping[str, str]] = None) -> Settings:
    defaults = Settings.from_env(environ)
    args = build_parser(defaults).parse_args(argv)
    return Settings(
        port=args.port,
        listen_host=args.listen_host,
        unifi_host=args.unifi_host,
        api_key=args.api_key,
        api_secret_arn=args.api_secret_arn,
        request_timeout=args.request_timeout,
        verify_tls=args.verify_tls,
        log_level=args.log_level,
    )


def main(argv: Optional[List[str]] = None):
    settings = parse_settings(argv)
    log = setup_logging(settings.log_level)

    client = UnifiApiClient(
        host=settings.unifi_host,
        api_key=settings.resolve_api_key(),
        verify_tls=settings.verify_tls,
        request_timeout=settings.request_timeout,
    )
    app = create_app(client, request_timeout=settings.request_timeout)

    log.info(f"unifi-discovery v{__version__} listening on {settings.listen_host}:{settings.port}")
    log.info(f"upstream={client.base_url} api_key={'set' if client.api_key else 'unset'} verify_tls={settings.verify_tls}")

    uvicorn.run(
        app,
        host=settings.listen_host,
        port=settings.port,
        log_level="warning",  # We handle our own logging
        access_log=False,
    )


if __name__ == "__main__":
    main()
