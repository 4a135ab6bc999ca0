"""
Package schema loading for type catalogs.

The aws-native and azure-native package schemas list every resource token
the import tooling understands. They are fetched once per run over HTTP, or
read from a local file when one is supplied.
"""
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from cloudimport.constants import SCHEMA_FETCH_ATTEMPTS, SCHEMA_FETCH_TIMEOUT
from cloudimport.errors import FatalSetupFailure
from cloudimport.utils import retry_with_backoff

logger = logging.getLogger(__name__)


@dataclass
class PackageSchema:
    """The parts of a package schema used for discovery."""
    name: str = ""
    version: str = ""
    resources: Dict[str, Any] = field(default_factory=dict)
    csharp_namespaces: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PackageSchema":
        language = data.get('language') or {}
        csharp = language.get('csharp') or {}
        return cls(
            name=data.get('name', ''),
            version=data.get('version', ''),
            resources=data.get('resources') or {},
            csharp_namespaces=csharp.get('namespaces') or {},
        )

    @property
    def resource_tokens(self) -> List[str]:
        return list(self.resources.keys())


@retry_with_backoff(max_attempts=SCHEMA_FETCH_ATTEMPTS, exceptions=(httpx.TransportError,))
def fetch_schema(url: str, timeout: float = SCHEMA_FETCH_TIMEOUT) -> Dict[str, Any]:
    """Download a package schema; transport errors are retried."""
    logger.info(f"Fetching package schema from {url}")
    response = httpx.get(url, timeout=timeout, follow_redirects=True)
    response.raise_for_status()
    return response.json()


def load_schema_file(path: str) -> Dict[str, Any]:
    """Read a package schema from a local JSON file."""
    schema_path = Path(path).expanduser()
    logger.info(f"Loading package schema from {schema_path}")
    with open(schema_path) as f:
        return json.load(f)


def load_schema(url: str, path: Optional[str] = None) -> PackageSchema:
    """
    Load a package schema from a local file if given, else from url.

    Raises:
        FatalSetupFailure: If the schema cannot be retrieved or parsed
    """
    source = path or url
    try:
        data = load_schema_file(path) if path else fetch_schema(url)
    except (httpx.HTTPError, OSError, ValueError) as e:
        raise FatalSetupFailure(f"Failed to load package schema from {source}: {e}") from e

    if not isinstance(data, dict):
        raise FatalSetupFailure(f"Package schema from {source} is not a JSON object")

    schema = PackageSchema.from_dict(data)
    logger.info(f"Loaded {schema.name or 'package'} schema with {len(schema.resources)} resource types")
    return schema
