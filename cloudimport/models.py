"""
Data models for the cloud import tools.
"""
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceTypeDescriptor:
    """
    One kind of resource known to a provider's type catalog.
    """
    type_id: str  # e.g. "aws-native:ec2:Instance", "apps/v1:Deployment"
    namespace: str = ""  # e.g. "ec2", "apps"
    listing_key: str = ""  # what the listing API expects, e.g. "AWS::EC2::Instance"


@dataclass
class CanonicalRecord:
    """
    Normalized representation of one discovered resource instance.
    """
    type_token: str  # e.g. "aws-native:ec2:Instance"
    identity: str  # provider-native unique id
    display_name: str  # sanitized to [A-Za-z0-9 ]

    # Identity of the enclosing group-like record, if any
    parent: Optional[str] = None

    # Optional import hints
    provider: Optional[str] = None
    version: Optional[str] = None
    plugin_download_url: Optional[str] = None
    properties: List[str] = field(default_factory=list)

    @property
    def key(self) -> Tuple[str, str]:
        """Deduplication key: (type_token, identity)."""
        return (self.type_token, self.identity)

    def to_import_spec(self, parent_name: Optional[str] = None) -> Dict[str, Any]:
        """
        Serialize as one entry of an import file.

        Only type, name and id are always present. In the file a parent is
        referenced by its name, so the caller passes the resolved name.
        """
        spec: Dict[str, Any] = {
            'type': self.type_token,
            'name': self.display_name,
            'id': self.identity,
        }
        if parent_name:
            spec['parent'] = parent_name
        if self.provider:
            spec['provider'] = self.provider
        if self.version:
            spec['version'] = self.version
        if self.plugin_download_url:
            spec['pluginDownloadUrl'] = self.plugin_download_url
        if self.properties:
            spec['properties'] = list(self.properties)
        return spec


@dataclass
class ListPage:
    """One page of a listing call. A next_cursor of None means done."""
    items: List[Any] = field(default_factory=list)
    next_cursor: Optional[str] = None

    @property
    def done(self) -> bool:
        return self.next_cursor is None


@dataclass
class TypeSummary:
    """Aggregated count for one type token."""
    type_token: str
    resource_count: int = 0

    def to_dict(self) -> Dict:
        """Convert to dictionary for serialization."""
        return asdict(self)


def aggregate_counts(records: List[CanonicalRecord]) -> List[TypeSummary]:
    """
    Aggregate records into per-type summaries, sorted by type token.
    """
    summaries: Dict[str, TypeSummary] = {}

    for record in records:
        if record.type_token not in summaries:
            summaries[record.type_token] = TypeSummary(type_token=record.type_token)
        summaries[record.type_token].resource_count += 1

    return sorted(summaries.values(), key=lambda s: s.type_token)


class Inventory:
    """
    Ordered collection of unique canonical records plus a name table.

    Records are kept in arrival order, which is not stable across runs.
    Once closed, the inventory rejects further writes.
    """

    def __init__(self, name_table: Optional[Dict[str, str]] = None):
        self.records: List[CanonicalRecord] = []
        self.name_table: Dict[str, str] = dict(name_table or {})
        self._keys: set = set()
        self._by_identity: Dict[str, CanonicalRecord] = {}
        self._closed = False

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[CanonicalRecord]:
        return iter(self.records)

    def __contains__(self, key: Tuple[str, str]) -> bool:
        return key in self._keys

    @property
    def closed(self) -> bool:
        return self._closed

    def add(self, record: CanonicalRecord) -> bool:
        """Append a record. Returns False if its (type_token, identity) is already present."""
        if self._closed:
            raise RuntimeError("Inventory is closed")
        if record.key in self:
            return False
        self._keys.add(record.key)
        self._by_identity.setdefault(record.identity, record)
        self.records.append(record)
        return True

    def find(self, identity: str) -> Optional[CanonicalRecord]:
        """Return the first record added with this identity."""
        return self._by_identity.get(identity)

    def drop_dangling_parents(self) -> int:
        """Clear parent references that point outside this inventory."""
        if self._closed:
            raise RuntimeError("Inventory is closed")
        cleared = 0
        for record in self.records:
            if record.parent and record.parent not in self._by_identity:
                logger.warning(f"Dropping parent {record.parent} of {record.type_token} "
                               f"{record.identity}: parent not in inventory")
                record.parent = None
                cleared += 1
        return cleared

    def close(self) -> None:
        self._closed = True

    def summarize(self) -> List[TypeSummary]:
        return aggregate_counts(self.records)

    def to_import_file(self) -> Dict[str, Any]:
        """Build the import file document: {"nameTable": ..., "resources": [...]}."""
        resources = []
        for record in self.records:
            parent_name = None
            if record.parent:
                parent = self._by_identity.get(record.parent)
                parent_name = parent.display_name if parent else None
            resources.append(record.to_import_spec(parent_name))
        return {
            'nameTable': dict(self.name_table),
            'resources': resources,
        }
