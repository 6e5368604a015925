"""Provisioning protocol — the only way the bot touches cloud resources.

Today it's OCI reserved public IPs (collectors/oci_client.py); tests use
an in-memory fake.  Every call is bounded by a caller-supplied timeout and
raises ProviderError on failure or timeout.
"""
from __future__ import annotations

from typing import Callable, Optional, Protocol

from schemas.domain import Resource


class ReservationProvider(Protocol):
    account_name: str
    region: str

    def create(self, name: str, timeout: float) -> Resource:
        ...

    def wait_ready(
        self,
        resource_id: str,
        timeout: float,
        *,
        interrupted: Optional[Callable[[], bool]] = None,
    ) -> Resource:
        """Poll until the resource leaves ``provisioning``.

        *interrupted* is checked between polls; when it returns True the
        wait is abandoned with ProviderError.
        """
        ...

    def list(self, timeout: float) -> list[Resource]:
        ...

    def delete(self, resource_id: str, timeout: float) -> None:
        ...
