"""OCI reserved-IP client with the SDK mocked out."""
from __future__ import annotations

from types import SimpleNamespace
from unittest import mock

import oci
import pytest

from collectors import oci_client
from collectors.oci_client import (
    ReservedIPClient,
    build_client,
    build_sdk_config,
    find_by_address,
    to_resource,
)
from schemas.domain import Resource, ResourceState
from schemas.errors import ProviderError


def _ip(state="AVAILABLE", ip="203.0.113.10", ocid="ocid1.publicip.oc1..a"):
    return SimpleNamespace(id=ocid, ip_address=ip, display_name="auto-1", lifecycle_state=state)


@pytest.fixture
def vn():
    """The mocked VirtualNetworkClient instance every call goes through."""
    with mock.patch.object(oci_client.oci.core, "VirtualNetworkClient") as cls:
        yield cls.return_value


@pytest.fixture
def client(vn):
    return ReservedIPClient(
        account_name="tokyo",
        region="ap-tokyo-1",
        compartment_id="ocid1.compartment.oc1..c",
        sdk_config={"region": "ap-tokyo-1"},
        poll_seconds=0,
    )


# ── Mapping ───────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "state, expected",
    [
        ("PROVISIONING", ResourceState.PROVISIONING),
        ("AVAILABLE", ResourceState.AVAILABLE),
        ("ASSIGNED", ResourceState.AVAILABLE),
        ("TERMINATING", ResourceState.DELETED),
        ("TERMINATED", ResourceState.DELETED),
    ],
)
def test_to_resource_state(state, expected):
    assert to_resource(_ip(state)).state is expected


def test_to_resource_tolerates_missing_address():
    r = to_resource(SimpleNamespace(id="x", ip_address=None, display_name=None, lifecycle_state="PROVISIONING"))
    assert r == Resource(id="x", address="", display_name="", state=ResourceState.PROVISIONING)


def test_find_by_address():
    resources = [Resource("a", "1.1.1.1"), Resource("b", "2.2.2.2")]
    assert find_by_address(resources, "2.2.2.2").id == "b"
    assert find_by_address(resources, "3.3.3.3") is None


# ── Config ────────────────────────────────────────────────────────

class TestSdkConfig:

    def test_missing_key_file(self, tmp_path):
        with pytest.raises(ProviderError, match="key file does not exist"):
            build_sdk_config(user="u", fingerprint="f", tenancy="t", region="r", key_file=str(tmp_path / "nope.pem"))

    def test_invalid_config_is_provider_error(self, tmp_path):
        key = tmp_path / "k.pem"
        key.write_text("x")
        with mock.patch.object(
            oci_client.oci.config,
            "validate_config",
            side_effect=oci.exceptions.InvalidConfig({"user": "malformed"}),
        ):
            with pytest.raises(ProviderError, match="invalid OCI config"):
                build_sdk_config(user="u", fingerprint="f", tenancy="t", region="r", key_file=str(key))

    def test_build_client_from_account(self, settings):
        with mock.patch.object(oci_client.oci.config, "validate_config"):
            client = build_client(settings.accounts[1], poll_seconds=0.5)
        assert client.account_name == "osaka"
        assert client.region == "ap-osaka-1"
        assert client.compartment_id == settings.accounts[1].tenancy
        assert client.sdk_config["key_file"] == settings.accounts[1].key_file
        assert client.poll_seconds == 0.5


# ── Calls ─────────────────────────────────────────────────────────

class TestCalls:

    def test_create_reserved(self, client, vn):
        vn.create_public_ip.return_value = mock.Mock(data=_ip("PROVISIONING"))
        resource = client.create("auto-1", timeout=30)
        details = vn.create_public_ip.call_args.args[0]
        assert details.lifetime == "RESERVED"
        assert details.compartment_id == "ocid1.compartment.oc1..c"
        assert details.display_name == "auto-1"
        assert resource.state is ResourceState.PROVISIONING

    def test_create_error(self, client, vn):
        vn.create_public_ip.side_effect = RuntimeError("LimitExceeded")
        with pytest.raises(ProviderError, match="LimitExceeded"):
            client.create("auto-1", timeout=30)

    def test_sdk_client_per_timeout(self, client):
        with mock.patch.object(oci_client.oci.core, "VirtualNetworkClient") as cls:
            client._vn(30)
            client._vn(30)
            client._vn(60)
        assert cls.call_count == 2
        assert cls.call_args.kwargs["timeout"] == (oci_client.CONNECT_TIMEOUT, 60)

    def test_wait_ready_polls_until_available(self, client, vn):
        vn.get_public_ip.side_effect = [
            mock.Mock(data=_ip("PROVISIONING")),
            mock.Mock(data=_ip("PROVISIONING")),
            mock.Mock(data=_ip("AVAILABLE")),
        ]
        resource = client.wait_ready("ocid1.publicip.oc1..a", timeout=5)
        assert resource.state is ResourceState.AVAILABLE
        assert vn.get_public_ip.call_count == 3

    def test_repeated_waits_reuse_one_sdk_client(self, client, vn):
        vn.get_public_ip.side_effect = [
            mock.Mock(data=_ip(state)) for _ in range(10) for state in ("PROVISIONING",) * 4 + ("AVAILABLE",)
        ]
        for _ in range(10):
            client.wait_ready("ocid1.publicip.oc1..a", timeout=5)
        assert vn.get_public_ip.call_count == 50
        assert len(client._clients) == 1

    def test_wait_ready_terminated(self, client, vn):
        vn.get_public_ip.return_value = mock.Mock(data=_ip("TERMINATED"))
        with pytest.raises(ProviderError, match="terminated"):
            client.wait_ready("ocid1.publicip.oc1..a", timeout=5)

    def test_wait_ready_interrupted(self, client, vn):
        vn.get_public_ip.return_value = mock.Mock(data=_ip("PROVISIONING"))
        with pytest.raises(ProviderError, match="interrupted"):
            client.wait_ready("ocid1.publicip.oc1..a", timeout=5, interrupted=lambda: True)

    def test_wait_ready_timeout(self, client, vn):
        with pytest.raises(ProviderError, match="timeout"):
            client.wait_ready("ocid1.publicip.oc1..a", timeout=0)
        vn.get_public_ip.assert_not_called()

    def test_list_region_scoped_reserved(self, client, vn):
        with mock.patch.object(oci_client.oci.pagination, "list_call_get_all_results") as paged:
            paged.return_value = mock.Mock(data=[_ip(ip="1.1.1.1"), _ip(ip="2.2.2.2")])
            resources = client.list(timeout=30)
        assert [r.address for r in resources] == ["1.1.1.1", "2.2.2.2"]
        args, kwargs = paged.call_args
        assert args[0] is vn.list_public_ips
        assert kwargs == {"scope": "REGION", "compartment_id": "ocid1.compartment.oc1..c", "lifetime": "RESERVED"}

    def test_list_error(self, client):
        with mock.patch.object(oci_client.oci.pagination, "list_call_get_all_results", side_effect=RuntimeError("401")):
            with pytest.raises(ProviderError, match="failed to list"):
                client.list(timeout=30)

    def test_delete(self, client, vn):
        client.delete("ocid1.publicip.oc1..a", timeout=30)
        vn.delete_public_ip.assert_called_once_with("ocid1.publicip.oc1..a")

    def test_delete_error(self, client, vn):
        vn.delete_public_ip.side_effect = RuntimeError("409 Conflict")
        with pytest.raises(ProviderError, match="409"):
            client.delete("ocid1.publicip.oc1..a", timeout=30)
