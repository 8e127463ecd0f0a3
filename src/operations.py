"""
Waiting on long-running cloud operations.
"""

import logging
import time
from typing import Callable, Dict

from clients import ComputeRestClient
from errors import OperationError
from models import RegionLocator, ZoneLocator

logger = logging.getLogger(__name__)


def raise_for_operation_errors(operation: Dict) -> Dict:
    """
    Raise if ``operation`` carries an embedded error list.

    Only the first error is reported; the rest are dropped.

    Returns:
        The operation, unchanged

    Raises:
        OperationError: If the operation has errors
    """
    errors = (operation.get("error") or {}).get("errors") or []
    if errors:
        first = errors[0]
        name = operation.get("name")
        if len(errors) > 1:
            logger.debug(f"Operation {name} reported {len(errors)} errors, surfacing the first")
        raise OperationError(
            code=str(first.get("code", "UNKNOWN")),
            message=first.get("message", ""),
            operation=name,
        )
    return operation


class OperationWaiter:
    """
    Blocks until compute operations finish, using the scope-specific wait calls.

    A single wait call returns when the operation is done or when the
    platform wait deadline passes, whichever is first. Re-invoking ``wait``
    for an operation that is still running is the caller's decision.
    """

    def __init__(self, api: ComputeRestClient):
        self.api = api

    def wait_zone(self, zone: ZoneLocator, operation_id: str) -> Dict:
        logger.debug(f"Waiting on zone operation {operation_id} in {zone.zone_id}")
        return raise_for_operation_errors(self.api.wait_zone_operation(zone, operation_id))

    def wait_region(self, region: RegionLocator, operation_id: str) -> Dict:
        logger.debug(f"Waiting on region operation {operation_id} in {region.region_id}")
        return raise_for_operation_errors(
            self.api.wait_region_operation(region, operation_id)
        )

    def wait_global(self, project_id: str, operation_id: str) -> Dict:
        logger.debug(f"Waiting on global operation {operation_id} in {project_id}")
        return raise_for_operation_errors(
            self.api.wait_global_operation(project_id, operation_id)
        )


def poll_until_done(
    get_operation: Callable[[str], Dict],
    operation_name: str,
    poll_interval: float = 2.0,
) -> Dict:
    """
    Poll a non-compute operation (resource manager, service usage) until done.

    Args:
        get_operation: Fetches the operation by name
        operation_name: Operation resource name
        poll_interval: Seconds between polls

    Returns:
        The finished operation

    Raises:
        OperationError: If the finished operation carries an error
    """
    while True:
        time.sleep(poll_interval)
        operation = get_operation(operation_name)
        if operation.get("done", False):
            break

    error = operation.get("error")
    if error:
        raise OperationError(
            code=str(error.get("code", "UNKNOWN")),
            message=error.get("message", ""),
            operation=operation_name,
        )
    return operation
