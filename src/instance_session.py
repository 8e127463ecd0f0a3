"""
Session for the direct instance API, where instance creation returns the
instance itself instead of a long-running operation.
"""

import logging
import re
import time
from typing import Dict, List

from clients import ComputeRestClient
from errors import ParseError, ProvisionerError
from models import InstanceInfo, InstanceSpecification

logger = logging.getLogger(__name__)

DIRECT_API_BASE = "https://compute.api.cloud.yandex.net/compute/v1"


def make_valid_instance_name(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9-]", "", name)


class InstanceSession:
    """Direct instance API calls for one account."""

    MAX_CREATE_REQUESTS = 10
    CREATE_RETRY_DELAY_S = 5.0

    def __init__(self, api: ComputeRestClient, base_url: str = DIRECT_API_BASE):
        """
        Args:
            api: Authenticated request executor for the account
            base_url: Root URL of the direct instance API
        """
        self.api = api
        self.base_url = base_url.rstrip("/")

    def _request(self, method: str, action_path: str, body: Dict = None, params: Dict = None) -> Dict:
        return self.api.execute(
            method, f"{self.base_url}/{action_path}", params=params, body=body
        )

    def get_account(self) -> Dict:
        logger.info("Requesting account")
        return self._request("GET", "account").get("account", {})

    def create_instance(
        self,
        display_name: str,
        region: str,
        public_key_for_ssh: str,
        instance_spec: InstanceSpecification,
    ) -> InstanceInfo:
        """
        Register an SSH key and create an instance that uses it.

        Args:
            display_name: Human readable name, sanitised into the instance name
            region: Region to create the instance in
            public_key_for_ssh: Public key installed on the instance
            instance_spec: Size, image, tags and install command

        Returns:
            The created instance
        """
        instance_name = make_valid_instance_name(display_name)
        key_id = self._register_key(instance_name, public_key_for_ssh)
        return self._make_create_instance_request(instance_name, region, key_id, instance_spec)

    def _make_create_instance_request(
        self,
        instance_name: str,
        region: str,
        key_id: str,
        instance_spec: InstanceSpecification,
    ) -> InstanceInfo:
        """
        Create the instance, retrying while a same-named instance is still finalizing.

        The attempt counter covers the whole call. Once it is exhausted, or
        for any other error, the underlying error is raised unchanged.
        """
        body = {
            "name": instance_name,
            "region": region,
            "size": instance_spec.size,
            "image": instance_spec.image,
            "ssh_keys": [key_id],
            "user_data": instance_spec.install_command,
            "tags": instance_spec.tags,
            "ipv6": True,
        }
        request_count = 0
        while True:
            request_count += 1
            logger.info(
                f"Requesting instance creation {request_count}/{self.MAX_CREATE_REQUESTS}"
            )
            try:
                response = self._request("POST", "instances", body=body)
            except ProvisionerError as e:
                if (
                    "finalizing" in str(e).lower()
                    and request_count < self.MAX_CREATE_REQUESTS
                ):
                    logger.warning(
                        f"Instance name {instance_name} is still finalizing, "
                        f"retrying in {self.CREATE_RETRY_DELAY_S:.0f}s"
                    )
                    time.sleep(self.CREATE_RETRY_DELAY_S)
                    continue
                raise
            return self._parse_instance(response)

    def delete_instance(self, instance_id: str) -> None:
        logger.info("Requesting instance deletion")
        self._request("DELETE", f"instances/{instance_id}")

    def get_region_info(self) -> List[Dict]:
        logger.info("Requesting region info")
        return self._request("GET", "regions").get("regions", [])

    def _register_key(self, key_name: str, public_key_for_ssh: str) -> str:
        logger.info("Requesting key registration")
        response = self._request(
            "POST", "account/keys", body={"name": key_name, "public_key": public_key_for_ssh}
        )
        try:
            return response["ssh_key"]["id"]
        except (KeyError, TypeError) as e:
            raise ParseError(f"Key registration returned unexpected response: {response}") from e

    def get_instance(self, instance_id: str) -> InstanceInfo:
        logger.info("Requesting instance")
        return self._parse_instance(self._request("GET", f"instances/{instance_id}"))

    def get_instance_tags(self, instance_id: str) -> List[str]:
        return self.get_instance(instance_id).tags

    def get_instances_by_tag(self, tag: str) -> List[InstanceInfo]:
        logger.info("Requesting instance by tag")
        response = self._request("GET", "instances", params={"tag_name": tag})
        return [InstanceInfo.from_dict(item) for item in response.get("instances", [])]

    def get_instances(self) -> List[InstanceInfo]:
        logger.info("Requesting instances")
        response = self._request("GET", "instances")
        return [InstanceInfo.from_dict(item) for item in response.get("instances", [])]

    @staticmethod
    def _parse_instance(response: Dict) -> InstanceInfo:
        if "instance" not in response:
            raise ParseError(f"Response has no instance: {response}")
        return InstanceInfo.from_dict(response["instance"])
