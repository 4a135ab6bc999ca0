"""
Provider adapter interface.

An adapter is everything the discovery engine needs to know about one
provider: how to build a listing client, what the type catalog is, how to
list one page of one type, and how to turn a listed item into a record.
"""
from typing import Any, FrozenSet, List, Optional

from cloudimport.models import CanonicalRecord, ListPage, ResourceTypeDescriptor


class ProviderAdapter:
    """
    Base class for provider adapters.

    Clients returned by new_client() are never shared: the engine asks for
    one per worker.
    """

    name: str = ""
    default_workers: int = 1
    # When True, discover_parents() runs to completion before any shard worker starts
    parent_linking: bool = False
    skip_types: FrozenSet[str] = frozenset()

    def new_client(self) -> Any:
        raise NotImplementedError

    def discover_parents(self, client: Any) -> List[CanonicalRecord]:
        """Group-like records to publish before child discovery."""
        return []

    def load_catalog(self, parents: List[CanonicalRecord]) -> List[ResourceTypeDescriptor]:
        raise NotImplementedError

    def type_token(self, descriptor: ResourceTypeDescriptor) -> Optional[str]:
        """
        Canonical token for a descriptor, or None when the listing is
        heterogeneous and each item carries its own token.

        Raises:
            UnmappableType: If the descriptor has no token
        """
        return descriptor.type_id

    def list_page(self, client: Any, descriptor: ResourceTypeDescriptor,
                  cursor: Optional[str]) -> ListPage:
        raise NotImplementedError

    def build_record(self, descriptor: ResourceTypeDescriptor, type_token: Optional[str],
                     item: Any) -> CanonicalRecord:
        """
        Map one listed item to a record.

        Raises:
            UnmappableType: If the item's type has no token
        """
        raise NotImplementedError
