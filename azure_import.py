#!/usr/bin/env python3
"""
Cloud Import - Azure Resource Discovery

Lists the resource groups of one subscription and location, then every
resource inside them, and maps each to an azure-native type token. Resource
groups are published first so every resource can be parented to its group.

Authentication:
    ARM_OIDC_TOKEN set     -> ClientAssertionCredential (ARM_TENANT_ID, ARM_CLIENT_ID)
    otherwise              -> DefaultAzureCredential (az login, managed identity, env vars)

Usage:
    export ARM_SUBSCRIPTION_ID=xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxxxxx
    python3 azure_import.py
    python3 azure_import.py --location eastus --workers 20
    python3 azure_import.py --mode register --stack dev
"""
import argparse
import logging
import os
import sys
from typing import Any, Dict, FrozenSet, List, Optional

from azure.identity import ClientAssertionCredential, DefaultAzureCredential
from azure.mgmt.resource import ResourceManagementClient

# Add repo root to path for imports
sys.path.insert(0, '.')
from cloudimport.catalog import PackageSchema, load_schema
from cloudimport.config import RunConfig
from cloudimport.constants import (
    AZURE_DEFAULT_LOCATION,
    AZURE_MANAGEMENT_SCOPE,
    AZURE_RESOURCE_GROUP_TOKEN,
    DEFAULT_WORKERS,
    PROVIDER_AZURE,
    SCHEMA_URLS,
)
from cloudimport.errors import FatalSetupFailure
from cloudimport.mapper import (
    azure_resource_group_id,
    azure_resource_name,
    azure_type_token,
    sanitize_name,
)
from cloudimport.models import CanonicalRecord, ListPage, ResourceTypeDescriptor
from cloudimport.provider import ProviderAdapter
from cloudimport.runner import COMMON_EPILOG, add_common_arguments, run
from cloudimport.utils import check_and_raise_auth_error

logger = logging.getLogger(__name__)


# =============================================================================
# Authentication
# =============================================================================

def get_credential():
    """Get Azure credential, preferring an OIDC token when one is provided."""
    oidc_token = os.environ.get('ARM_OIDC_TOKEN')
    if oidc_token:
        tenant_id = os.environ.get('ARM_TENANT_ID')
        client_id = os.environ.get('ARM_CLIENT_ID')
        if not tenant_id or not client_id:
            raise FatalSetupFailure("ARM_OIDC_TOKEN requires ARM_TENANT_ID and ARM_CLIENT_ID")
        logger.info("Using OIDC client assertion credential")
        return ClientAssertionCredential(tenant_id, client_id, lambda: oidc_token)
    return DefaultAzureCredential()


def verify_credential(credential) -> None:
    """Request a management-plane token to fail fast on bad credentials."""
    try:
        credential.get_token(AZURE_MANAGEMENT_SCOPE)
    except Exception as e:
        check_and_raise_auth_error(e, "acquire an Azure management token", PROVIDER_AZURE)
        raise FatalSetupFailure(f"Failed to acquire an Azure management token: {e}") from e


def normalize_location(location: Optional[str]) -> str:
    """'West US 2' -> 'westus2'."""
    return (location or '').replace(' ', '').lower()


# =============================================================================
# Adapter
# =============================================================================

class AzureAdapter(ProviderAdapter):
    """
    Resource Manager listing, one catalog entry per resource group.

    Items in a group listing are heterogeneous, so type tokens are resolved
    per item and validated against the azure-native schema.
    """

    name = PROVIDER_AZURE
    default_workers = DEFAULT_WORKERS[PROVIDER_AZURE]
    parent_linking = True

    def __init__(self, credential, subscription_id: str, schema: PackageSchema,
                 location: str = AZURE_DEFAULT_LOCATION):
        self.credential = credential
        self.subscription_id = subscription_id
        self.location = normalize_location(location)
        self.known_tokens: FrozenSet[str] = frozenset(schema.resource_tokens)
        self.version = schema.version or None
        # Lower-cased group id -> id as reported by the resource group listing
        self._group_ids: Dict[str, str] = {}

    def new_client(self) -> ResourceManagementClient:
        return ResourceManagementClient(self.credential, self.subscription_id)

    def discover_parents(self, client: ResourceManagementClient) -> List[CanonicalRecord]:
        parents = []
        for group in client.resource_groups.list():
            if normalize_location(group.location) != self.location:
                continue
            self._group_ids[group.id.lower()] = group.id
            parents.append(CanonicalRecord(
                type_token=AZURE_RESOURCE_GROUP_TOKEN,
                identity=group.id,
                display_name=sanitize_name(group.name),
                version=self.version,
            ))
        logger.info(f"Found {len(parents)} resource groups in {self.location}")
        return parents

    def load_catalog(self, parents: List[CanonicalRecord]) -> List[ResourceTypeDescriptor]:
        return [
            ResourceTypeDescriptor(
                type_id=parent.identity,
                namespace='resourceGroups',
                listing_key=azure_resource_name(parent.identity),
            )
            for parent in parents
            if parent.type_token == AZURE_RESOURCE_GROUP_TOKEN
        ]

    def type_token(self, descriptor: ResourceTypeDescriptor) -> Optional[str]:
        return None

    def list_page(self, client: ResourceManagementClient, descriptor: ResourceTypeDescriptor,
                  cursor: Optional[str]) -> ListPage:
        pages = client.resources.list_by_resource_group(
            descriptor.listing_key,
            filter=f"location eq '{self.location}'",
        ).by_page(continuation_token=cursor)

        page = next(pages, None)
        if page is None:
            return ListPage(items=[], next_cursor=None)
        items = list(page)
        # The pager exposes the next link once the page has been read
        return ListPage(items=items, next_cursor=pages.continuation_token or None)

    def build_record(self, descriptor: ResourceTypeDescriptor, type_token: Optional[str],
                     item: Any) -> CanonicalRecord:
        token = azure_type_token(item.type, self.known_tokens)
        group_id = azure_resource_group_id(item.id)
        parent = self._group_ids.get(group_id.lower(), group_id) if group_id else descriptor.type_id
        return CanonicalRecord(
            type_token=token,
            identity=item.id,
            display_name=sanitize_name(azure_resource_name(item.id)),
            parent=parent,
            version=self.version,
        )


def create_adapter(run_config: RunConfig) -> AzureAdapter:
    """
    Resolve the subscription, verify credentials and load the azure-native catalog.

    Raises:
        FatalSetupFailure: If the subscription, credentials or schema are unusable
    """
    options = run_config.provider_options
    subscription_id = options.get('subscription')
    if not subscription_id:
        raise FatalSetupFailure("ARM_SUBSCRIPTION_ID (or --subscription) is required")
    location = options.get('location') or AZURE_DEFAULT_LOCATION

    credential = get_credential()
    verify_credential(credential)
    logger.info(f"Using subscription {subscription_id} in {location}")

    schema = load_schema(SCHEMA_URLS[PROVIDER_AZURE], run_config.schema)
    return AzureAdapter(credential, subscription_id, schema, location=location)


def main():
    parser = argparse.ArgumentParser(
        description='Cloud Import - Azure Resource Discovery',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Export an import file for one subscription
  ARM_SUBSCRIPTION_ID=... python3 azure_import.py

  # Another location, more workers
  python3 azure_import.py --subscription ... --location eastus --workers 20
""" + COMMON_EPILOG
    )
    add_common_arguments(parser, PROVIDER_AZURE)
    parser.add_argument('--subscription', help='Subscription ID (default: ARM_SUBSCRIPTION_ID)')
    parser.add_argument('--location', help=f'Location to list (default: ARM_LOCATION or {AZURE_DEFAULT_LOCATION})')

    args = parser.parse_args()
    sys.exit(run(PROVIDER_AZURE, create_adapter, args))


if __name__ == '__main__':
    main()
