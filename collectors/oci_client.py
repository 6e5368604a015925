# collectors/oci_client.py
from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import oci

from schemas.domain import Resource, ResourceState
from schemas.errors import ProviderError

log = logging.getLogger(__name__)

CONNECT_TIMEOUT = 10.0
DEFAULT_POLL_SECONDS = 2.0

_PROVISIONING_STATES = {"PROVISIONING"}
_DELETED_STATES = {"TERMINATING", "TERMINATED"}


def _state_of(lifecycle_state: Optional[str]) -> ResourceState:
    if lifecycle_state in _PROVISIONING_STATES:
        return ResourceState.PROVISIONING
    if lifecycle_state in _DELETED_STATES:
        return ResourceState.DELETED
    return ResourceState.AVAILABLE


def to_resource(public_ip: Any) -> Resource:
    """SDK ``PublicIp`` model → Resource."""
    return Resource(
        id=public_ip.id,
        address=public_ip.ip_address or "",
        display_name=public_ip.display_name or "",
        state=_state_of(public_ip.lifecycle_state),
    )


def build_sdk_config(
    *,
    user: str,
    fingerprint: str,
    tenancy: str,
    region: str,
    key_file: str,
) -> Dict[str, Any]:
    """Raw SDK config dict; a missing key file fails here, at startup."""
    if not os.path.isfile(key_file):
        raise ProviderError(f"key file does not exist: {key_file}")

    config = {
        "user": user,
        "fingerprint": fingerprint,
        "tenancy": tenancy,
        "region": region,
        "key_file": key_file,
    }
    try:
        oci.config.validate_config(config)
    except oci.exceptions.InvalidConfig as e:
        raise ProviderError(f"invalid OCI config: {e}") from e
    return config


@dataclass
class ReservedIPClient:
    """Reserved public IPs in one account's compartment (region scope).

    SDK clients carry their own (connect, read) timeout, so one is kept
    per distinct read timeout.  SDK retries are disabled: the controller
    owns retry policy.
    """
    account_name: str
    region: str
    compartment_id: str
    sdk_config: Dict[str, Any]
    poll_seconds: float = DEFAULT_POLL_SECONDS
    _clients: Dict[float, Any] = field(default_factory=dict, repr=False)
    _clients_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def _vn(self, timeout: float) -> Any:
        client = self._clients.get(timeout)
        if client is None:
            with self._clients_lock:
                client = self._clients.get(timeout)
                if client is None:
                    client = oci.core.VirtualNetworkClient(
                        self.sdk_config,
                        timeout=(CONNECT_TIMEOUT, timeout),
                        retry_strategy=oci.retry.NoneRetryStrategy(),
                    )
                    self._clients[timeout] = client
        return client

    # ── Provisioning contract ────────────────────────────────────

    def create(self, name: str, timeout: float) -> Resource:
        details = oci.core.models.CreatePublicIpDetails(
            compartment_id=self.compartment_id,
            lifetime="RESERVED",
            display_name=name,
        )
        try:
            response = self._vn(timeout).create_public_ip(details)
        except Exception as e:
            raise ProviderError(f"failed to create reserved IP: {e}") from e
        return to_resource(response.data)

    def get(self, resource_id: str, timeout: float) -> Resource:
        try:
            response = self._vn(timeout).get_public_ip(resource_id)
        except Exception as e:
            raise ProviderError(f"failed to get public IP status: {e}") from e
        return to_resource(response.data)

    def wait_ready(
        self,
        resource_id: str,
        timeout: float,
        *,
        interrupted: Optional[Callable[[], bool]] = None,
    ) -> Resource:
        deadline = time.monotonic() + timeout
        while True:
            if time.monotonic() >= deadline:
                break
            # Fixed read timeout so every poll reuses the cached SDK client.
            resource = self.get(resource_id, timeout=timeout)
            if resource.state is ResourceState.AVAILABLE:
                return resource
            if resource.state is ResourceState.DELETED:
                raise ProviderError(f"public IP {resource_id} was terminated while waiting")
            if interrupted is not None and interrupted():
                raise ProviderError("wait for public IP interrupted")
            time.sleep(min(self.poll_seconds, max(deadline - time.monotonic(), 0)))
        raise ProviderError("timeout waiting for public IP to become available")

    def list(self, timeout: float) -> list[Resource]:
        try:
            response = oci.pagination.list_call_get_all_results(
                self._vn(timeout).list_public_ips,
                scope="REGION",
                compartment_id=self.compartment_id,
                lifetime="RESERVED",
            )
        except Exception as e:
            raise ProviderError(f"failed to list reserved IPs: {e}") from e
        return [to_resource(ip) for ip in response.data]

    def delete(self, resource_id: str, timeout: float) -> None:
        try:
            self._vn(timeout).delete_public_ip(resource_id)
        except Exception as e:
            raise ProviderError(f"failed to delete reserved IP: {e}") from e


def build_client(account: Any, poll_seconds: float = DEFAULT_POLL_SECONDS) -> ReservedIPClient:
    """Client for an ``AccountSettings``; raises ProviderError on bad credentials."""
    log.info("Creating OCI client for [%s] (%s)", account.name, account.region)
    sdk_config = build_sdk_config(
        user=account.user,
        fingerprint=account.fingerprint,
        tenancy=account.tenancy,
        region=account.region,
        key_file=account.key_file,
    )
    return ReservedIPClient(
        account_name=account.name,
        region=account.region,
        compartment_id=account.compartment_id,
        sdk_config=sdk_config,
        poll_seconds=poll_seconds,
    )


def find_by_address(resources: list[Resource], address: str) -> Optional[Resource]:
    for resource in resources:
        if resource.address == address:
            return resource
    return None

