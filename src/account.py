"""
Cloud account: project setup, server creation and server discovery.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from auth import AccessTokenProvider
from clients import ComputeRestClient
from errors import ServerInstallFailedError
from install_script import InstallSettings, build_install_script
from models import (
    BillingAccount,
    InstanceLocator,
    Project,
    Zone,
    ZoneLocator,
    ZoneOption,
    parse_zone_url,
)
from operations import OperationWaiter, poll_until_done
from server import ManagedServer
from tasks import resolved, run_in_background

logger = logging.getLogger(__name__)


def make_instance_name(now: Optional[datetime] = None) -> str:
    """Return a unique, RFC1035-style instance name based on the UTC time."""
    now = now or datetime.now(timezone.utc)
    return f"outline-{now.strftime('%Y%m%d-%H%M%S')}"


class CloudAccount:
    """A cloud account able to create and manage servers."""

    PROJECT_NAME = "Outline servers"
    FIREWALL_NAME = "outline"
    FIREWALL_TAG = "outline"
    SERVER_LABEL = "outline"
    MACHINE_SIZE = "e2-small"
    SOURCE_IMAGE = "projects/ubuntu-os-cloud/global/images/family/ubuntu-2204-lts"
    REQUIRED_SERVICES = ["compute.googleapis.com"]
    OPERATION_POLL_INTERVAL_S = 2.0

    def __init__(
        self,
        account_id: str,
        token_provider: AccessTokenProvider,
        install_settings: Optional[InstallSettings] = None,
        request_timeout: int = 60,
        poll_interval: Optional[float] = None,
        install_timeout: Optional[float] = None,
        api: Optional[ComputeRestClient] = None,
    ):
        """
        Args:
            account_id: Account ID, prefix of every server ID
            token_provider: Token source shared by all requests of the account
            install_settings: Settings for the install script of new servers
            request_timeout: HTTP request timeout in seconds
            poll_interval: Guest attribute poll interval for servers (seconds)
            install_timeout: Optional install deadline for servers (seconds)
            api: REST client to use instead of building one
        """
        self.id = account_id
        self.token_provider = token_provider
        self.install_settings = install_settings or InstallSettings()
        self.poll_interval = poll_interval
        self.install_timeout = install_timeout
        self.api = api or ComputeRestClient(token_provider, timeout_s=request_timeout)
        self.waiter = OperationWaiter(self.api)

    def get_id(self) -> str:
        return self.id

    def get_name(self) -> Optional[str]:
        """Return the e-mail address of the signed-in user."""
        return self.api.get_user_info().get("email")

    def _make_server(self, locator: InstanceLocator, instance_name: str, instance_creation) -> ManagedServer:
        return ManagedServer(
            f"{self.id}:{locator.instance_id}",
            locator,
            instance_name,
            instance_creation,
            self.api,
            poll_interval=self.poll_interval,
            install_timeout=self.install_timeout,
        )

    def list_servers(self, project_id: str) -> List[ManagedServer]:
        """
        List the managed servers of a project.

        Args:
            project_id: Project ID

        Returns:
            A ManagedServer for every instance carrying the managed label
        """
        servers: List[ManagedServer] = []
        instances = self.api.list_all_instances(
            project_id, f"labels.{self.SERVER_LABEL}=true"
        )
        for instance in instances:
            zone = parse_zone_url(instance["zone"])
            locator = InstanceLocator(
                project_id=project_id,
                zone_id=zone.zone_id,
                instance_id=str(instance["id"]),
            )
            servers.append(self._make_server(locator, instance["name"], resolved()))
        logger.info(f"Found {len(servers)} server(s) in {project_id}")
        return servers

    def list_locations(self, project_id: str) -> List[ZoneOption]:
        zones = self.api.list_zones(project_id).get("items") or []
        return [
            ZoneOption(cloud_location=Zone(zone["name"]), available=zone.get("status") == "UP")
            for zone in zones
        ]

    def list_projects(self) -> List[Project]:
        response = self.api.list_projects(
            f"labels.{self.SERVER_LABEL}=true AND lifecycleState=ACTIVE"
        )
        return [
            Project(id=project["projectId"], name=project.get("name", ""))
            for project in response.get("projects") or []
        ]

    def create_project(self, project_id: str, billing_account_id: str) -> Project:
        """
        Create a project for servers and link it to a billing account.

        Raises:
            OperationError: If project creation or service enabling fails
        """
        operation = self.api.create_project(
            {
                "projectId": project_id,
                "name": self.PROJECT_NAME,
                "labels": {self.SERVER_LABEL: "true"},
            }
        )
        poll_until_done(
            self.api.resource_manager_operation_get,
            operation["name"],
            self.OPERATION_POLL_INTERVAL_S,
        )
        logger.info(f"Created project {project_id}")

        self._configure_project(project_id, billing_account_id)
        return Project(id=project_id, name=self.PROJECT_NAME)

    def is_project_healthy(self, project_id: str) -> bool:
        """Return True if billing is enabled and required services are on."""
        billing_info = self.api.get_project_billing_info(project_id)
        if not billing_info.get("billingEnabled"):
            return False

        services = self.api.list_enabled_services(project_id).get("services") or []
        enabled = {(service.get("config") or {}).get("name") for service in services}
        return all(required in enabled for required in self.REQUIRED_SERVICES)

    def repair_project(self, project_id: str, billing_account_id: str) -> None:
        self._configure_project(project_id, billing_account_id)

    def list_open_billing_accounts(self) -> List[BillingAccount]:
        response = self.api.list_billing_accounts()
        return [
            BillingAccount(
                id=account["name"].rsplit("/", 1)[-1],
                name=account.get("displayName", ""),
            )
            for account in response.get("billingAccounts") or []
            if account.get("open")
        ]

    def _configure_project(self, project_id: str, billing_account_id: str) -> None:
        self.api.update_project_billing_info(
            project_id,
            {
                "name": f"projects/{project_id}/billingInfo",
                "projectId": project_id,
                "billingAccountName": f"billingAccounts/{billing_account_id}",
            },
        )
        operation = self.api.enable_services(
            project_id, {"serviceIds": self.REQUIRED_SERVICES}
        )
        poll_until_done(
            self.api.service_usage_operation_get,
            operation["name"],
            self.OPERATION_POLL_INTERVAL_S,
        )
        logger.info(f"Configured billing and services for {project_id}")

    def _create_firewall_if_needed(self, project_id: str) -> None:
        response = self.api.list_firewalls(project_id, self.FIREWALL_NAME)
        if response.get("items"):
            return

        logger.info(f"Creating firewall {self.FIREWALL_NAME} in {project_id}")
        operation = self.api.create_firewall(
            project_id,
            {
                "name": self.FIREWALL_NAME,
                "direction": "INGRESS",
                "priority": 1000,
                "targetTags": [self.FIREWALL_TAG],
                "allowed": [{"IPProtocol": "all"}],
                "sourceRanges": ["0.0.0.0/0"],
            },
        )
        errors = (operation.get("error") or {}).get("errors")
        if errors:
            raise ServerInstallFailedError(f"Firewall creation failed: {errors}")

    def _instance_data(self, instance_name: str, name: str, zone: Zone, metrics_enabled: bool) -> Dict:
        return {
            "name": instance_name,
            # Human readable name shown in the cloud console
            "description": name,
            "machineType": f"zones/{zone.id}/machineTypes/{self.MACHINE_SIZE}",
            "disks": [
                {
                    "boot": True,
                    "initializeParams": {"sourceImage": self.SOURCE_IMAGE},
                }
            ],
            "networkInterfaces": [
                {
                    "network": "global/networks/default",
                    # An empty access config allocates an ephemeral IP.
                    "accessConfigs": [{}],
                }
            ],
            "labels": {self.SERVER_LABEL: "true"},
            # Must match the firewall target tag.
            "tags": {"items": [self.FIREWALL_TAG]},
            "metadata": {
                "items": [
                    {"key": "enable-guest-attributes", "value": "TRUE"},
                    {
                        "key": "user-data",
                        "value": build_install_script(
                            self.install_settings, name, metrics_enabled
                        ),
                    },
                ]
            },
        }

    def create_server(
        self, project_id: str, name: str, zone: Zone, metrics_enabled: bool
    ) -> ManagedServer:
        """
        Submit a new server and return its handle without waiting for the install.

        Args:
            project_id: Project to create the server in
            name: Human readable server name
            zone: Zone for the instance
            metrics_enabled: Whether the server reports metrics

        Returns:
            ManagedServer whose progress can be monitored

        Raises:
            ServerInstallFailedError: If the firewall or instance submission fails
        """
        self._create_firewall_if_needed(project_id)

        instance_name = make_instance_name()
        zone_locator = ZoneLocator(project_id=project_id, zone_id=zone.id)
        operation = self.api.create_instance(
            zone_locator,
            self._instance_data(instance_name, name, zone, metrics_enabled),
        )
        errors = (operation.get("error") or {}).get("errors")
        if errors:
            raise ServerInstallFailedError(f"Instance creation failed: {errors}")

        locator = InstanceLocator(
            project_id=project_id,
            zone_id=zone.id,
            instance_id=str(operation["targetId"]),
        )
        logger.info(f"Submitted instance {instance_name} ({locator.instance_id}) in {zone.id}")
        instance_creation = run_in_background(
            self._wait_for_instance_creation,
            zone_locator,
            operation["name"],
        )
        return self._make_server(locator, instance_name, instance_creation)

    def _wait_for_instance_creation(self, zone: ZoneLocator, operation_id: str) -> Dict:
        operation = self.waiter.wait_zone(zone, operation_id)
        while operation.get("status", "DONE") != "DONE":
            logger.info(f"Instance creation {operation_id} still {operation['status']}, waiting again")
            operation = self.waiter.wait_zone(zone, operation_id)
        return operation
