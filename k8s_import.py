#!/usr/bin/env python3
"""
Cloud Import - Kubernetes Resource Discovery

Lists every object of every listable, preferred API resource on the cluster
and maps each to a kubernetes type token (kubernetes:<group>/<version>:<Kind>).

Usage:
    python3 k8s_import.py
    python3 k8s_import.py --kubeconfig ~/.kube/prod --context prod-admin
    python3 k8s_import.py --skip-types "kubernetes:core/v1:Event,kubernetes:events.k8s.io/v1:Event"
"""
import argparse
import logging
import sys
from typing import Any, Dict, List, Optional

from kubernetes import config as kube_config
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.resource import ResourceList

# Add repo root to path for imports
sys.path.insert(0, '.')
from cloudimport.config import RunConfig
from cloudimport.constants import DEFAULT_WORKERS, KUBERNETES_PAGE_SIZE, PROVIDER_KUBERNETES
from cloudimport.errors import FatalSetupFailure, UnmappableType
from cloudimport.mapper import (
    kubernetes_identity,
    kubernetes_type_token,
    sanitize_name,
    split_api_version,
)
from cloudimport.models import CanonicalRecord, ListPage, ResourceTypeDescriptor
from cloudimport.provider import ProviderAdapter
from cloudimport.runner import COMMON_EPILOG, add_common_arguments, run
from cloudimport.utils import check_and_raise_auth_error

logger = logging.getLogger(__name__)


def get_dynamic_client(kubeconfig: Optional[str] = None, context: Optional[str] = None) -> DynamicClient:
    """Build a dynamic client from a kubeconfig file and optional context."""
    api_client = kube_config.new_client_from_config(config_file=kubeconfig, context=context)
    return DynamicClient(api_client)


def is_listable(resource: Any) -> bool:
    """Preferred top-level resources that support list; no sub-resources or *List kinds."""
    if isinstance(resource, ResourceList):
        return False
    if '/' in (getattr(resource, 'name', '') or ''):
        return False
    if not getattr(resource, 'preferred', False):
        return False
    return 'list' in (getattr(resource, 'verbs', None) or [])


class KubernetesAdapter(ProviderAdapter):
    """Dynamic-client listing for every listable API resource."""

    name = PROVIDER_KUBERNETES
    default_workers = DEFAULT_WORKERS[PROVIDER_KUBERNETES]

    def __init__(self, kubeconfig: Optional[str] = None, context: Optional[str] = None):
        self.kubeconfig = kubeconfig
        self.context = context

    def new_client(self) -> DynamicClient:
        return get_dynamic_client(self.kubeconfig, self.context)

    def load_catalog(self, parents: List[CanonicalRecord]) -> List[ResourceTypeDescriptor]:
        client = self.new_client()
        descriptors: Dict[str, ResourceTypeDescriptor] = {}
        for resource in client.resources.search():
            if not is_listable(resource):
                continue
            key = f"{resource.group_version}:{resource.kind}"
            descriptors[key] = ResourceTypeDescriptor(
                type_id=key,
                namespace=resource.group or '',
                listing_key=key,
            )
        logger.info(f"Found {len(descriptors)} listable API resources")
        return list(descriptors.values())

    def type_token(self, descriptor: ResourceTypeDescriptor) -> Optional[str]:
        api_version, _, kind = descriptor.listing_key.rpartition(':')
        group, version = split_api_version(api_version)
        return kubernetes_type_token(group, version, kind)

    def list_page(self, client: DynamicClient, descriptor: ResourceTypeDescriptor,
                  cursor: Optional[str]) -> ListPage:
        api_version, _, kind = descriptor.listing_key.rpartition(':')
        resource = client.resources.get(api_version=api_version, kind=kind)

        kwargs: Dict[str, Any] = {'limit': KUBERNETES_PAGE_SIZE}
        if cursor:
            kwargs['_continue'] = cursor
        response = resource.get(**kwargs).to_dict()

        metadata = response.get('metadata') or {}
        # An empty continue token is the last page
        return ListPage(items=response.get('items') or [], next_cursor=metadata.get('continue') or None)

    def build_record(self, descriptor: ResourceTypeDescriptor, type_token: Optional[str],
                     item: Any) -> CanonicalRecord:
        if not type_token:
            raise UnmappableType(f"No type token for {descriptor.type_id}")
        metadata = item.get('metadata') or {}
        if not metadata.get('name'):
            raise UnmappableType(f"{type_token} object without a name")
        identity = kubernetes_identity(metadata['name'], metadata.get('namespace'))
        return CanonicalRecord(
            type_token=type_token,
            identity=identity,
            display_name=sanitize_name(identity),
        )


def create_adapter(run_config: RunConfig) -> KubernetesAdapter:
    """
    Check that the cluster is reachable with the given kubeconfig.

    Raises:
        FatalSetupFailure: If the kubeconfig is unusable or the cluster refuses access
    """
    options = run_config.provider_options
    adapter = KubernetesAdapter(options.get('kubeconfig'), options.get('context'))
    try:
        adapter.new_client()
    except Exception as e:
        check_and_raise_auth_error(e, "connect to the Kubernetes API", PROVIDER_KUBERNETES)
        raise FatalSetupFailure(f"Failed to connect to the Kubernetes API: {e}") from e
    return adapter


def main():
    parser = argparse.ArgumentParser(
        description='Cloud Import - Kubernetes Resource Discovery',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Current kubeconfig context
  python3 k8s_import.py

  # Specific kubeconfig and context
  python3 k8s_import.py --kubeconfig ~/.kube/prod --context prod-admin
""" + COMMON_EPILOG
    )
    add_common_arguments(parser, PROVIDER_KUBERNETES)
    parser.add_argument('--kubeconfig', help='Path to kubeconfig (default: KUBECONFIG or ~/.kube/config)')
    parser.add_argument('--context', help='Kubeconfig context to use')

    args = parser.parse_args()
    sys.exit(run(PROVIDER_KUBERNETES, create_adapter, args))


if __name__ == '__main__':
    main()
