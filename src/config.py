"""
Configuration management for the server provisioner.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from install_script import InstallSettings

REFRESH_TOKEN_ENV = "PROVISIONER_REFRESH_TOKEN"
CLIENT_ID_ENV = "PROVISIONER_CLIENT_ID"
CLIENT_SECRET_ENV = "PROVISIONER_CLIENT_SECRET"


@dataclass
class ProvisionerConfig:
    """Configuration for provisioning operations."""

    project_id: str
    account_id: str = "default"
    refresh_token: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    poll_interval: float = 5.0
    install_timeout: Optional[float] = None
    request_timeout: int = 60
    metrics_enabled: bool = False
    install_settings: InstallSettings = field(default_factory=InstallSettings)
    verbose: bool = False

    @classmethod
    def from_args(cls, args) -> "ProvisionerConfig":
        """
        Create configuration from command-line arguments.

        Credentials missing from the arguments are read from the environment.

        Args:
            args: Parsed argparse arguments

        Returns:
            ProvisionerConfig instance
        """
        return cls(
            project_id=args.project,
            account_id=args.account_id,
            refresh_token=args.refresh_token or os.environ.get(REFRESH_TOKEN_ENV),
            client_id=args.client_id or os.environ.get(CLIENT_ID_ENV),
            client_secret=args.client_secret or os.environ.get(CLIENT_SECRET_ENV),
            poll_interval=args.poll_interval,
            install_timeout=args.install_timeout,
            request_timeout=args.request_timeout,
            metrics_enabled=getattr(args, "metrics", False),
            install_settings=InstallSettings(
                container_image=args.container_image,
                metrics_url=args.metrics_url,
            ),
            verbose=args.verbose,
        )
