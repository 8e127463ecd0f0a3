"""
REST API client for the compute control plane and its companion services.
"""

import logging
from typing import Dict, List, Optional

import requests

from auth import AccessTokenProvider
from errors import (
    AuthError,
    NetworkError,
    NotFoundError,
    ParseError,
    TransportError,
)
from models import InstanceLocator, RegionLocator, ZoneLocator

logger = logging.getLogger(__name__)

COMPUTE_API_BASE = "https://compute.googleapis.com/compute/v1"
RESOURCE_MANAGER_API_BASE = "https://cloudresourcemanager.googleapis.com/v1"
BILLING_API_BASE = "https://cloudbilling.googleapis.com/v1"
SERVICE_USAGE_API_BASE = "https://serviceusage.googleapis.com/v1"
USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"


def error_from_response(resp: requests.Response) -> TransportError:
    """
    Build a typed error from a non-2xx response.

    Both ``{"error": {"code", "message"}}`` and ``{"id", "message"}`` bodies
    are understood; anything else falls back to the raw text.
    """
    message = ""
    request_id = ""
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict):
            message = error.get("message", "")
        elif isinstance(error, str):
            message = data.get("error_description", error)
        else:
            message = data.get("message", "")
        request_id = str(data.get("id", "") or "")
    if not message:
        message = (resp.text or resp.reason or "")[:200]

    status = resp.status_code
    if status == 404:
        return NotFoundError(status, message, request_id)
    if status in (401, 403):
        return AuthError(status, message, request_id)
    return TransportError(status, message, request_id)


class ComputeRestClient:
    """Authenticated request executor plus typed wrappers for the calls we use."""

    def __init__(
        self,
        token_provider: AccessTokenProvider,
        timeout_s: int = 60,
        session: Optional[requests.Session] = None,
        compute_base: str = COMPUTE_API_BASE,
    ):
        """
        Args:
            token_provider: Source of bearer tokens, shared by all calls for an account
            timeout_s: Request timeout in seconds
            session: HTTP session to use (a new one by default)
            compute_base: Compute API root URL
        """
        self.token_provider = token_provider
        self.timeout_s = timeout_s
        self.session = session or requests.Session()
        self.compute_base = compute_base.rstrip("/")

    def execute(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict] = None,
        body: Optional[Dict] = None,
    ) -> Dict:
        """
        Perform an authenticated request and decode its JSON body.

        Args:
            method: HTTP method
            url: Absolute request URL
            headers: Extra request headers
            params: Query parameters
            body: JSON request body

        Returns:
            Decoded response body (empty dict for an empty body)

        Raises:
            TransportError: On a non-2xx response (NotFoundError, AuthError subclasses)
            NetworkError: If no response was received
            ParseError: If the response body is not valid JSON
        """
        token = self.token_provider.get_token()
        request_headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        if headers:
            request_headers.update(headers)

        logger.debug(f"{method} {url}")
        try:
            resp = self.session.request(
                method,
                url,
                headers=request_headers,
                params=params,
                json=body,
                timeout=self.timeout_s,
            )
        except requests.RequestException as e:
            raise NetworkError(f"{method} {url} failed: {e}") from e

        if not 200 <= resp.status_code <= 299:
            error = error_from_response(resp)
            if resp.status_code == 401:
                self.token_provider.invalidate(token)
            logger.error(f"{method} {url} failed with status {resp.status_code}")
            raise error

        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as e:
            raise ParseError(f"Malformed response from {method} {url}: {e}") from e

    def _compute_url(self, path: str) -> str:
        return f"{self.compute_base}/{path.lstrip('/')}"

    @staticmethod
    def _zone_path(locator) -> str:
        return f"projects/{locator.project_id}/zones/{locator.zone_id}"

    @staticmethod
    def _region_path(locator: RegionLocator) -> str:
        return f"projects/{locator.project_id}/regions/{locator.region_id}"

    def _instance_path(self, locator: InstanceLocator) -> str:
        return f"{self._zone_path(locator)}/instances/{locator.instance_id}"

    # Instances

    def create_instance(self, zone: ZoneLocator, data: Dict) -> Dict:
        """Submit an instance; returns the zone operation."""
        url = self._compute_url(f"{self._zone_path(zone)}/instances")
        return self.execute("POST", url, body=data)

    def get_instance(self, locator: InstanceLocator) -> Dict:
        return self.execute("GET", self._compute_url(self._instance_path(locator)))

    def delete_instance(self, locator: InstanceLocator) -> Dict:
        return self.execute("DELETE", self._compute_url(self._instance_path(locator)))

    def list_all_instances(self, project_id: str, filter_: Optional[str] = None) -> List[Dict]:
        """
        List instances in every zone of a project.

        Args:
            project_id: Project ID
            filter_: Optional list filter expression

        Returns:
            Instance resources from all zones
        """
        url = self._compute_url(f"projects/{project_id}/aggregated/instances")
        instances: List[Dict] = []
        page_token: Optional[str] = None

        while True:
            params = {}
            if filter_:
                params["filter"] = filter_
            if page_token:
                params["pageToken"] = page_token

            data = self.execute("GET", url, params=params)
            for scoped in (data.get("items") or {}).values():
                instances.extend(scoped.get("instances") or [])

            page_token = data.get("nextPageToken")
            if not page_token:
                break

        return instances

    def get_guest_attributes(self, locator: InstanceLocator, namespace: str) -> Optional[Dict]:
        """
        Read guest attributes under ``namespace``.

        Returns:
            The guest attributes resource, or None if nothing was published yet
        """
        url = self._compute_url(f"{self._instance_path(locator)}/getGuestAttributes")
        try:
            return self.execute("GET", url, params={"queryPath": namespace})
        except NotFoundError:
            return None

    # Static addresses

    def create_static_ip(self, region: RegionLocator, data: Dict) -> Dict:
        url = self._compute_url(f"{self._region_path(region)}/addresses")
        return self.execute("POST", url, body=data)

    def get_static_ip(self, region: RegionLocator, address_name: str) -> Dict:
        url = self._compute_url(f"{self._region_path(region)}/addresses/{address_name}")
        return self.execute("GET", url)

    def delete_static_ip(self, region: RegionLocator, address_name: str) -> Dict:
        url = self._compute_url(f"{self._region_path(region)}/addresses/{address_name}")
        return self.execute("DELETE", url)

    # Firewalls and zones

    def list_firewalls(self, project_id: str, name: str) -> Dict:
        url = self._compute_url(f"projects/{project_id}/global/firewalls")
        return self.execute("GET", url, params={"filter": f"name={name}"})

    def create_firewall(self, project_id: str, data: Dict) -> Dict:
        url = self._compute_url(f"projects/{project_id}/global/firewalls")
        return self.execute("POST", url, body=data)

    def list_zones(self, project_id: str) -> Dict:
        return self.execute("GET", self._compute_url(f"projects/{project_id}/zones"))

    # Compute operations. Each call blocks server-side until the operation
    # is done or the platform wait deadline passes.

    def wait_zone_operation(self, zone: ZoneLocator, operation_id: str) -> Dict:
        url = self._compute_url(f"{self._zone_path(zone)}/operations/{operation_id}/wait")
        return self.execute("POST", url)

    def wait_region_operation(self, region: RegionLocator, operation_id: str) -> Dict:
        url = self._compute_url(f"{self._region_path(region)}/operations/{operation_id}/wait")
        return self.execute("POST", url)

    def wait_global_operation(self, project_id: str, operation_id: str) -> Dict:
        url = self._compute_url(f"projects/{project_id}/global/operations/{operation_id}/wait")
        return self.execute("POST", url)

    # Projects, billing and services

    def create_project(self, data: Dict) -> Dict:
        return self.execute("POST", f"{RESOURCE_MANAGER_API_BASE}/projects", body=data)

    def list_projects(self, filter_: Optional[str] = None) -> Dict:
        params = {"filter": filter_} if filter_ else None
        return self.execute("GET", f"{RESOURCE_MANAGER_API_BASE}/projects", params=params)

    def resource_manager_operation_get(self, operation_name: str) -> Dict:
        return self.execute("GET", f"{RESOURCE_MANAGER_API_BASE}/{operation_name}")

    def get_project_billing_info(self, project_id: str) -> Dict:
        return self.execute("GET", f"{BILLING_API_BASE}/projects/{project_id}/billingInfo")

    def update_project_billing_info(self, project_id: str, data: Dict) -> Dict:
        url = f"{BILLING_API_BASE}/projects/{project_id}/billingInfo"
        return self.execute("PUT", url, body=data)

    def list_billing_accounts(self) -> Dict:
        return self.execute("GET", f"{BILLING_API_BASE}/billingAccounts")

    def enable_services(self, project_id: str, data: Dict) -> Dict:
        url = f"{SERVICE_USAGE_API_BASE}/projects/{project_id}/services:batchEnable"
        return self.execute("POST", url, body=data)

    def list_enabled_services(self, project_id: str) -> Dict:
        url = f"{SERVICE_USAGE_API_BASE}/projects/{project_id}/services"
        return self.execute("GET", url, params={"filter": "state:ENABLED"})

    def service_usage_operation_get(self, operation_name: str) -> Dict:
        return self.execute("GET", f"{SERVICE_USAGE_API_BASE}/{operation_name}")

    def get_user_info(self) -> Dict:
        return self.execute("GET", USERINFO_URL)
