"""
Tests for azure_import.py (Resource Manager adapter).

Covers:
- Credential selection (OIDC client assertion vs DefaultAzureCredential)
- Resource group discovery filtered by location
- One catalog entry per resource group
- Paging list_by_resource_group with continuation tokens
- Per-item type tokens, schema validation and parent linking
- End-to-end discovery: groups first, children parented
- create_adapter setup failures
"""
import os
import sys
from types import SimpleNamespace
from unittest.mock import Mock, patch

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from azure_import import (
    AzureAdapter,
    create_adapter,
    get_credential,
    normalize_location,
    verify_credential,
)
from cloudimport.catalog import PackageSchema
from cloudimport.config import RunConfig
from cloudimport.engine import discover
from cloudimport.errors import AuthError, FatalSetupFailure, UnmappableType
from cloudimport.models import ResourceTypeDescriptor

SUB = "/subscriptions/sub123"
RG_WEB = f"{SUB}/resourceGroups/rg-web"
RG_DATA = f"{SUB}/resourceGroups/rg-data"
RG_EAST = f"{SUB}/resourceGroups/rg-east"

SCHEMA = PackageSchema.from_dict({
    "name": "azure-native",
    "version": "2.1.0",
    "resources": {
        "azure-native:resources:ResourceGroup": {},
        "azure-native:compute:VirtualMachine": {},
        "azure-native:storage:StorageAccount": {},
    },
})


def group(group_id, location="westus2"):
    return SimpleNamespace(id=group_id, name=group_id.rsplit("/", 1)[1], location=location)


def resource(resource_id, resource_type):
    return SimpleNamespace(id=resource_id, type=resource_type)


class FakePages:
    """Stand-in for the azure-core page iterator."""

    def __init__(self, pages, token):
        self.pages = pages
        self.token = token
        self.continuation_token = None

    def __iter__(self):
        return self

    def __next__(self):
        if self.token not in self.pages:
            raise StopIteration
        items, next_token = self.pages[self.token]
        self.continuation_token = next_token
        self.token = object()
        return iter(items)


class FakeResourceClient:
    """ResourceManagementClient stand-in; pages are keyed by group name then token."""

    def __init__(self, groups, pages):
        self.resource_groups = Mock()
        self.resource_groups.list.return_value = groups
        self.resources = Mock()
        self.pages = pages

        def list_by_resource_group(name, filter=None):
            self.resources.last_filter = filter
            pager = Mock()
            pager.by_page.side_effect = lambda continuation_token=None: FakePages(
                self.pages.get(name, {}), continuation_token)
            return pager

        self.resources.list_by_resource_group.side_effect = list_by_resource_group


@pytest.fixture
def adapter():
    return AzureAdapter(Mock(), "sub123", SCHEMA, location="West US 2")


@pytest.fixture
def client():
    vm = resource(f"{RG_WEB}/providers/Microsoft.Compute/virtualMachines/vm-1", "Microsoft.Compute/virtualMachines")
    vm2 = resource(f"{RG_WEB}/providers/Microsoft.Compute/virtualMachines/vm-2", "Microsoft.Compute/virtualMachines")
    account = resource(
        f"{SUB}/resourcegroups/rg-data/providers/Microsoft.Storage/storageAccounts/data01",
        "Microsoft.Storage/storageAccounts",
    )
    unknown = resource(f"{RG_DATA}/providers/Microsoft.Foo/bars/b1", "Microsoft.Foo/bars")
    return FakeResourceClient(
        groups=[group(RG_WEB), group(RG_DATA, location="West US 2"), group(RG_EAST, location="eastus")],
        pages={
            "rg-web": {None: ([vm], "next-1"), "next-1": ([vm2], None)},
            "rg-data": {None: ([account, unknown], None)},
        },
    )


# =============================================================================
# Credential Tests
# =============================================================================

class TestCredentials:
    """Tests for get_credential and verify_credential."""

    @patch("azure_import.DefaultAzureCredential")
    def test_default_credential(self, mock_default, monkeypatch):
        monkeypatch.delenv("ARM_OIDC_TOKEN", raising=False)
        assert get_credential() is mock_default.return_value

    @patch("azure_import.ClientAssertionCredential")
    def test_oidc_credential(self, mock_assertion, monkeypatch):
        monkeypatch.setenv("ARM_OIDC_TOKEN", "jwt")
        monkeypatch.setenv("ARM_TENANT_ID", "tenant")
        monkeypatch.setenv("ARM_CLIENT_ID", "client")

        get_credential()

        tenant, client_id, assertion = mock_assertion.call_args[0]
        assert (tenant, client_id) == ("tenant", "client")
        assert assertion() == "jwt"

    def test_oidc_requires_ids(self, monkeypatch):
        monkeypatch.setenv("ARM_OIDC_TOKEN", "jwt")
        monkeypatch.delenv("ARM_TENANT_ID", raising=False)
        with pytest.raises(FatalSetupFailure):
            get_credential()

    def test_verify_auth_failure(self):
        credential = Mock()
        credential.get_token.side_effect = type("ClientAuthenticationError", (Exception,), {})("denied")
        with pytest.raises(AuthError):
            verify_credential(credential)

    def test_verify_other_failure(self):
        credential = Mock()
        credential.get_token.side_effect = RuntimeError("no network")
        with pytest.raises(FatalSetupFailure):
            verify_credential(credential)

    @pytest.mark.parametrize("raw,expected", [("West US 2", "westus2"), ("eastus", "eastus"), (None, "")])
    def test_normalize_location(self, raw, expected):
        assert normalize_location(raw) == expected


# =============================================================================
# Adapter Tests
# =============================================================================

class TestAdapter:
    """Tests for AzureAdapter pieces."""

    def test_parents_filtered_by_location(self, adapter, client):
        parents = adapter.discover_parents(client)

        assert [p.identity for p in parents] == [RG_WEB, RG_DATA]
        assert all(p.type_token == "azure-native:resources:ResourceGroup" for p in parents)
        assert parents[0].display_name == "rgweb"
        assert parents[0].version == "2.1.0"

    def test_catalog_per_group(self, adapter, client):
        catalog = adapter.load_catalog(adapter.discover_parents(client))

        assert [(d.type_id, d.listing_key) for d in catalog] == [(RG_WEB, "rg-web"), (RG_DATA, "rg-data")]
        assert adapter.type_token(catalog[0]) is None

    def test_paging(self, adapter, client):
        descriptor = ResourceTypeDescriptor(RG_WEB, "resourceGroups", "rg-web")

        first = adapter.list_page(client, descriptor, None)
        second = adapter.list_page(client, descriptor, first.next_cursor)

        assert first.next_cursor == "next-1"
        assert second.done
        assert [i.id.rsplit("/", 1)[1] for i in first.items + second.items] == ["vm-1", "vm-2"]
        assert client.resources.last_filter == "location eq 'westus2'"

    def test_empty_group(self, adapter, client):
        page = adapter.list_page(client, ResourceTypeDescriptor(RG_EAST, "resourceGroups", "rg-east"), None)
        assert page.items == [] and page.done

    def test_build_record_uses_group_id(self, adapter, client):
        adapter.discover_parents(client)
        descriptor = ResourceTypeDescriptor(RG_DATA, "resourceGroups", "rg-data")
        item = client.pages["rg-data"][None][0][0]

        record = adapter.build_record(descriptor, None, item)

        assert record.type_token == "azure-native:storage:StorageAccount"
        assert record.display_name == "data01"
        # Lower-cased segment in the resource id still links to the listed group
        assert record.parent == RG_DATA
        assert record.version == "2.1.0"

    def test_unknown_type_unmappable(self, adapter):
        descriptor = ResourceTypeDescriptor(RG_DATA, "resourceGroups", "rg-data")
        with pytest.raises(UnmappableType):
            adapter.build_record(descriptor, None, resource(f"{RG_DATA}/providers/Microsoft.Foo/bars/b1",
                                                            "Microsoft.Foo/bars"))


class TestDiscovery:
    """End-to-end discovery with a fake Resource Manager client."""

    def test_discover(self, adapter, client):
        with patch.object(AzureAdapter, "new_client", return_value=client):
            result = discover(adapter, num_workers=3)

        inventory = result.inventory
        assert result.num_parents == 2
        assert [r.identity for r in inventory.records[:2]] == [RG_WEB, RG_DATA]
        assert len(inventory) == 5
        assert result.stats.items_unmappable == 1
        for record in inventory.records[2:]:
            assert record.parent in (RG_WEB, RG_DATA)

        document = inventory.to_import_file()
        vm_entries = [r for r in document["resources"] if r["type"] == "azure-native:compute:VirtualMachine"]
        assert {r["parent"] for r in vm_entries} == {"rgweb"}

    def test_group_listing_failure_is_fatal(self, adapter):
        failing = Mock()
        failing.resource_groups.list.side_effect = RuntimeError("throttled")

        with patch.object(AzureAdapter, "new_client", return_value=failing):
            with pytest.raises(FatalSetupFailure):
                discover(adapter, num_workers=2)


# =============================================================================
# create_adapter Tests
# =============================================================================

class TestCreateAdapter:
    """Tests for create_adapter."""

    def test_requires_subscription(self):
        with pytest.raises(FatalSetupFailure, match="ARM_SUBSCRIPTION_ID"):
            create_adapter(RunConfig(workers=10))

    @patch("azure_import.load_schema", return_value=SCHEMA)
    @patch("azure_import.get_credential")
    def test_success(self, mock_credential, mock_schema):
        run_config = RunConfig(workers=10, provider_options={"subscription": "sub123", "location": "eastus"})

        adapter = create_adapter(run_config)

        mock_credential.return_value.get_token.assert_called_once()
        assert adapter.location == "eastus"
        assert "azure-native:compute:VirtualMachine" in adapter.known_tokens
