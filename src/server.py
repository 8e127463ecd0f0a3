"""
Managed server provisioning state machine and host teardown.
"""

import base64
import binascii
import logging
import threading
import time
from concurrent.futures import Future
from typing import Callable, Dict, Iterator, Optional

from clients import ComputeRestClient
from errors import (
    NotFoundError,
    ParseError,
    ServerInstallCanceledError,
    ServerInstallFailedError,
)
from models import InstallState, InstanceLocator, ManagementEndpoint, Zone
from operations import OperationWaiter
from progress import ValueStream
from tasks import run_in_background, start_daemon

logger = logging.getLogger(__name__)

GUEST_ATTRIBUTES_NAMESPACE = "outline/"


def next_install_state(attributes: Dict[str, str]) -> Optional[InstallState]:
    """
    Map a guest attribute snapshot to the state it signals.

    Later milestones imply earlier ones, so keys are checked from the most
    advanced milestone down. Returns None when no milestone is present.
    """
    if "apiUrl" in attributes and "certSha256" in attributes:
        return InstallState.COMPLETED
    if "install-error" in attributes:
        return InstallState.FAILED
    if "certSha256" in attributes:
        return InstallState.CERTIFICATE_CREATED
    if "install-started" in attributes:
        return InstallState.INSTANCE_RUNNING
    return None


def make_management_endpoint(api_url: str, cert_sha256_b64: str) -> ManagementEndpoint:
    """
    Build the management endpoint from the published guest attributes.

    Raises:
        ParseError: If the fingerprint is not valid base64 text
    """
    try:
        fingerprint = base64.b64decode(cert_sha256_b64, validate=True).decode("ascii")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise ParseError(f"Malformed certificate fingerprint: {cert_sha256_b64!r}") from e
    return ManagementEndpoint(api_url=api_url, cert_sha256=fingerprint)


class ManagedServer:
    """
    A server created by, or discovered through, a cloud account.

    Construction starts provisioning in the background: wait for the
    instance to be created, make sure it has a static IP, then poll guest
    attributes until the install finishes. Listed servers pass an already
    resolved ``instance_creation`` and go through the same steps, which is
    how their management endpoint is discovered.
    """

    GUEST_ATTRIBUTES_POLLING_INTERVAL_S = 5.0

    def __init__(
        self,
        server_id: str,
        locator: InstanceLocator,
        instance_name: str,
        instance_creation: Future,
        api: ComputeRestClient,
        poll_interval: Optional[float] = None,
        install_timeout: Optional[float] = None,
    ):
        """
        Args:
            server_id: Account-scoped server ID (``account-id:instance-id``)
            locator: Instance locator
            instance_name: Instance name, also used as the static IP name
            instance_creation: Future settled when the instance exists
            api: REST client of the owning account
            poll_interval: Seconds between guest attribute polls
            install_timeout: Optional install deadline in seconds
        """
        self.id = server_id
        self.locator = locator
        self.instance_name = instance_name
        self.api = api
        self.waiter = OperationWaiter(api)
        self.poll_interval = (
            self.GUEST_ATTRIBUTES_POLLING_INTERVAL_S
            if poll_interval is None
            else poll_interval
        )
        self.install_timeout = install_timeout

        self._install_state: ValueStream[InstallState] = ValueStream(InstallState.UNKNOWN)
        self._state_lock = threading.Lock()
        self._management_endpoint: Optional[ManagementEndpoint] = None
        self._instance_readiness: Future = Future()
        self._host = ServerHost(
            locator, instance_name, self._instance_readiness, api, self._on_delete
        )

        has_static_ip = run_in_background(self._has_static_ip)
        start_daemon(
            self._provision,
            instance_creation,
            has_static_ip,
            name=f"provision-{instance_name}",
        )

    def get_id(self) -> str:
        return self.id

    def get_host(self) -> "ServerHost":
        return self._host

    def get_install_state(self) -> InstallState:
        return self._install_state.get()

    def get_management_endpoint(self) -> Optional[ManagementEndpoint]:
        return self._management_endpoint

    def monitor_install_progress(self) -> Iterator[float]:
        """
        Yield install completion fractions until the install finishes.

        Raises:
            ServerInstallFailedError: After the stream ends in FAILED
            ServerInstallCanceledError: After the stream ends in CANCELED
        """
        for state in self._install_state.watch():
            if state in (InstallState.FAILED, InstallState.CANCELED):
                break
            yield state.completion_fraction

        final_state = self._install_state.get()
        if final_state == InstallState.FAILED:
            raise ServerInstallFailedError(f"Installation of server {self.id} failed")
        if final_state == InstallState.CANCELED:
            raise ServerInstallCanceledError(f"Installation of server {self.id} was canceled")

    def _provision(self, instance_creation: Future, has_static_ip: Future) -> None:
        try:
            self._prepare_instance(instance_creation, has_static_ip)
        except Exception as e:
            logger.error(f"Setup of server {self.id} failed: {e}")
            self._set_install_state(InstallState.FAILED)
            self._instance_readiness.set_exception(e)
            return
        self._instance_readiness.set_result(None)
        if not self._install_state.is_closed():
            self._poll_install_state()

    def _prepare_instance(self, instance_creation: Future, has_static_ip: Future) -> None:
        instance_creation.result()
        if self._install_state.is_closed():
            return
        self._set_install_state(InstallState.INSTANCE_CREATED)
        if not has_static_ip.result():
            self._promote_ephemeral_ip()
        if self._install_state.is_closed():
            return
        self._set_install_state(InstallState.IP_ALLOCATED)

    def _has_static_ip(self) -> bool:
        try:
            self.api.get_static_ip(self.locator.region_locator, self.instance_name)
            return True
        except NotFoundError:
            return False
        except Exception as e:
            raise ServerInstallFailedError(f"Static IP check failed: {e}") from e

    def _promote_ephemeral_ip(self) -> None:
        instance = self.api.get_instance(self.locator)
        try:
            ip_address = instance["networkInterfaces"][0]["accessConfigs"][0]["natIP"]
        except (KeyError, IndexError, TypeError) as e:
            raise ServerInstallFailedError(
                f"Instance {self.instance_name} has no ephemeral IP to promote"
            ) from e

        region = self.locator.region_locator
        logger.info(f"Promoting {ip_address} to a static IP for {self.instance_name}")
        operation = self.api.create_static_ip(
            region,
            {
                "name": instance.get("name", self.instance_name),
                "description": instance.get("description", ""),
                "address": ip_address,
            },
        )
        operation_errors = (operation.get("error") or {}).get("errors")
        if operation_errors:
            raise ServerInstallFailedError(f"Static IP creation failed: {operation_errors}")
        operation_name = operation.get("name")
        if not operation_name:
            return
        operation = self.waiter.wait_region(region, operation_name)
        while operation.get("status", "DONE") != "DONE":
            logger.info(
                f"Static IP creation {operation_name} still {operation['status']}, waiting again"
            )
            operation = self.waiter.wait_region(region, operation_name)

    def _poll_install_state(self) -> None:
        deadline = (
            time.monotonic() + self.install_timeout
            if self.install_timeout is not None
            else None
        )
        while not self._install_state.is_closed():
            try:
                if self._apply_guest_attributes(self._get_guest_attributes()):
                    break
            except Exception as e:
                logger.error(f"Polling install state of server {self.id} failed: {e}")
                self._set_install_state(InstallState.FAILED)
                break

            if deadline is not None and time.monotonic() >= deadline:
                logger.error(
                    f"Server {self.id} did not finish installing within {self.install_timeout}s"
                )
                self._set_install_state(InstallState.FAILED)
                break

            # Wakes early when a deletion closes the stream.
            if self._install_state.wait_closed(self.poll_interval):
                break

    def _apply_guest_attributes(self, attributes: Dict[str, str]) -> bool:
        """Advance the state for one snapshot. Returns True once polling should stop."""
        state = next_install_state(attributes)
        if state is None:
            return False
        if state == InstallState.COMPLETED:
            endpoint = make_management_endpoint(
                attributes["apiUrl"], attributes["certSha256"]
            )
            self._set_install_state(InstallState.COMPLETED, endpoint)
            return True
        self._set_install_state(state)
        return state.is_final

    def _get_guest_attributes(self) -> Dict[str, str]:
        result: Dict[str, str] = {}
        guest_attributes = self.api.get_guest_attributes(
            self.locator, GUEST_ATTRIBUTES_NAMESPACE
        )
        items = ((guest_attributes or {}).get("queryValue") or {}).get("items") or []
        for entry in items:
            result[entry["key"]] = entry.get("value", "")
        return result

    def _set_install_state(
        self, new_state: InstallState, endpoint: Optional[ManagementEndpoint] = None
    ) -> bool:
        """
        Apply a transition. Returns False if it was ignored.

        ``endpoint`` is recorded only if the transition is accepted.
        """
        with self._state_lock:
            if self._install_state.is_closed():
                return False
            current = self._install_state.get()
            if new_state == current:
                return False
            if not new_state.is_final and new_state < current:
                logger.debug(
                    f"Server {self.id}: ignoring {new_state.name}, already {current.name}"
                )
                return False
            logger.info(f"Server {self.id} install state: {new_state.name}")
            if endpoint is not None:
                self._management_endpoint = endpoint
            self._install_state.set(new_state)
            if new_state.is_final:
                self._install_state.close()
            return True

    def _on_delete(self) -> None:
        self._set_install_state(InstallState.CANCELED)


class ServerHost:
    """Cloud resources backing a managed server."""

    def __init__(
        self,
        locator: InstanceLocator,
        instance_name: str,
        instance_readiness: Future,
        api: ComputeRestClient,
        delete_callback: Callable[[], None],
    ):
        self.locator = locator
        self.instance_name = instance_name
        self.api = api
        self._instance_readiness = instance_readiness
        self._delete_callback = delete_callback

    def delete(self) -> None:
        """
        Cancel any install in progress, then delete the static IP and the instance.

        Setup failures do not block deletion. Resources that do not exist
        are skipped.

        Raises:
            ProvisionerError: If a deletion request fails for another reason
        """
        self._delete_callback()
        try:
            self._instance_readiness.result()
        except Exception as e:
            logger.warning(f"Attempting deletion of server that failed setup: {e}")

        self._wait_for_delete(
            lambda: self.api.delete_static_ip(
                self.locator.region_locator, self.instance_name
            ),
            "Deleted server did not have a static IP",
        )
        self._wait_for_delete(
            lambda: self.api.delete_instance(self.locator),
            "No instance for deleted server",
        )

    @staticmethod
    def _wait_for_delete(deletion: Callable[[], Dict], msg_404: str) -> None:
        try:
            deletion()
        except NotFoundError:
            logger.warning(msg_404)

    def get_host_id(self) -> str:
        return self.locator.instance_id

    def get_cloud_location(self) -> Zone:
        return Zone(self.locator.zone_id)
