"""Console entry point for the server provisioner CLI."""

from __future__ import annotations

import argparse
import logging
from typing import List

from account import CloudAccount
from auth import AccessTokenProvider
from config import ProvisionerConfig
from errors import (
    ProvisionerError,
    ServerInstallCanceledError,
    ServerInstallFailedError,
)
from log_utils import setup_logging
from models import Zone

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--project", required=True, help="Cloud project ID")
    common.add_argument("--account-id", default="default", help="Local account ID")
    common.add_argument(
        "--refresh-token",
        help="OAuth2 refresh token (default: $PROVISIONER_REFRESH_TOKEN)",
    )
    common.add_argument("--client-id", help="OAuth2 client ID (default: $PROVISIONER_CLIENT_ID)")
    common.add_argument(
        "--client-secret",
        help="OAuth2 client secret (default: $PROVISIONER_CLIENT_SECRET)",
    )
    common.add_argument("--poll-interval", type=float, default=5.0)
    common.add_argument(
        "--install-timeout",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Fail the install if it has not finished after this long (default: no limit)",
    )
    common.add_argument("--request-timeout", type=int, default=60)
    common.add_argument("--container-image", default="")
    common.add_argument("--metrics-url", default="")
    common.add_argument("--verbose", action="store_true")

    parser = argparse.ArgumentParser(
        description="Provision and manage servers on a cloud compute platform"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    create = subparsers.add_parser("create", parents=[common], help="Create a server")
    create.add_argument("--name", required=True, help="Human readable server name")
    create.add_argument("--zone", required=True, help="Zone (e.g. us-central1-a)")
    create.add_argument("--metrics", action="store_true", help="Enable metrics reporting")

    subparsers.add_parser("list", parents=[common], help="List servers")

    delete = subparsers.add_parser("delete", parents=[common], help="Delete a server")
    delete.add_argument("--instance", required=True, help="Instance ID of the server")

    subparsers.add_parser("locations", parents=[common], help="List zones")
    return parser


def build_account(config: ProvisionerConfig) -> CloudAccount:
    token_provider = AccessTokenProvider(
        refresh_token=config.refresh_token,
        client_id=config.client_id,
        client_secret=config.client_secret,
    )
    return CloudAccount(
        config.account_id,
        token_provider,
        install_settings=config.install_settings,
        request_timeout=config.request_timeout,
        poll_interval=config.poll_interval,
        install_timeout=config.install_timeout,
    )


def run_create(account: CloudAccount, config: ProvisionerConfig, args) -> int:
    server = account.create_server(
        config.project_id, args.name, Zone(args.zone), config.metrics_enabled
    )
    logger.info(f"Created server {server.get_id()}, waiting for install...")
    try:
        for fraction in server.monitor_install_progress():
            logger.info(f"Install progress: {fraction:.0%}")
    except ServerInstallFailedError as e:
        logger.error(str(e))
        return 1
    except ServerInstallCanceledError as e:
        logger.warning(str(e))
        return 1
    except KeyboardInterrupt:
        logger.warning(f"Interrupted, deleting server {server.get_id()}")
        server.get_host().delete()
        return 130

    endpoint = server.get_management_endpoint()
    logger.info(f"Server {server.get_id()} is ready")
    logger.info(f"Management API: {endpoint.api_url}")
    logger.info(f"Certificate SHA-256: {endpoint.cert_sha256}")
    return 0


def run_list(account: CloudAccount, config: ProvisionerConfig, args) -> int:
    for server in account.list_servers(config.project_id):
        host = server.get_host()
        logger.info(
            f"{server.get_id():<40} {server.instance_name:<28} {host.get_cloud_location().id}"
        )
    return 0


def run_delete(account: CloudAccount, config: ProvisionerConfig, args) -> int:
    for server in account.list_servers(config.project_id):
        if server.get_host().get_host_id() == args.instance:
            server.get_host().delete()
            logger.info(f"Deleted server {server.get_id()}")
            return 0
    logger.error(f"No server with instance ID {args.instance} in {config.project_id}")
    return 1


def run_locations(account: CloudAccount, config: ProvisionerConfig, args) -> int:
    for option in account.list_locations(config.project_id):
        status = "available" if option.available else "unavailable"
        logger.info(f"{option.cloud_location.id:<28} {status}")
    return 0


COMMANDS = {
    "create": run_create,
    "list": run_list,
    "delete": run_delete,
    "locations": run_locations,
}


def main(argv: List[str] | None = None) -> int:
    """CLI main for console_scripts entry point."""
    parser = build_parser()
    args = parser.parse_args(args=argv)

    setup_logging(verbose=args.verbose)

    config = ProvisionerConfig.from_args(args)
    account = build_account(config)

    try:
        return COMMANDS[args.command](account, config, args)
    except ProvisionerError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
