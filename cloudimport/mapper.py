"""
Type-token mapping between provider-native descriptors and canonical tokens.

Every function here is pure: no network access, and the same input always
yields the same token. The only failure is UnmappableType.
"""
import re
import threading
from functools import lru_cache
from typing import Collection, Dict, Optional

import inflect

from cloudimport.constants import (
    AWS_PACKAGE,
    AZURE_PACKAGE,
    KUBERNETES_CORE_GROUP,
    KUBERNETES_PACKAGE,
)
from cloudimport.errors import UnmappableType

_NAME_STRIP_PATTERN = re.compile(r'[^A-Za-z0-9 ]+')

_inflector = inflect.engine()
_inflector_lock = threading.Lock()

# Words with these endings are already singular (Redis, Status, Alias)
_SINGULAR_ENDINGS = re.compile(r'(alias|[^aou]us|t[lm]as|gas|is)$', re.IGNORECASE)


def sanitize_name(value: str) -> str:
    """
    Strip every character outside [A-Za-z0-9 ].

    Characters are removed, not substituted, so distinct identities can
    collapse to the same name.
    """
    return _NAME_STRIP_PATTERN.sub('', value or '')


# =============================================================================
# AWS (Cloud Control)
# =============================================================================

def split_type_token(type_token: str) -> tuple:
    """Split "package:module:Kind" into its three parts."""
    parts = type_token.split(':')
    if len(parts) != 3 or not all(parts):
        raise UnmappableType(f"Malformed type token: {type_token!r}")
    return parts[0], parts[1], parts[2]


def cloudcontrol_type_name(type_token: str, namespaces: Optional[Dict[str, str]] = None) -> str:
    """
    Map an aws-native token to its Cloud Control type name.

    aws-native:ec2:Instance -> AWS::EC2::Instance, using the namespace alias
    table when it has an entry for the module and the raw module otherwise.
    """
    package, module, kind = split_type_token(type_token)
    if package != AWS_PACKAGE:
        raise UnmappableType(f"Not an {AWS_PACKAGE} token: {type_token}")
    namespace = (namespaces or {}).get(module, module)
    return f"AWS::{namespace}::{kind}"


def aws_display_name(type_token: str, identifier: str, namespaces: Optional[Dict[str, str]] = None) -> str:
    """Display name for a Cloud Control resource: namespace + kind + identifier."""
    _, module, kind = split_type_token(type_token)
    namespace = (namespaces or {}).get(module, module)
    return sanitize_name(f"{namespace}{kind}{identifier}")


# =============================================================================
# Azure (Resource Manager)
# =============================================================================

@lru_cache(maxsize=4096)
def singularize(word: str) -> str:
    """Singular form of a plural noun; words already singular pass through."""
    if _SINGULAR_ENDINGS.search(word):
        return word
    with _inflector_lock:
        singular = _inflector.singular_noun(word)
    return singular or word


def _upper_first(word: str) -> str:
    return word[:1].upper() + word[1:]


def azure_type_token(resource_type: str, known_tokens: Optional[Collection[str]] = None) -> str:
    """
    Map an ARM resource type to an azure-native token.

    Microsoft.Compute/virtualMachines -> azure-native:compute:VirtualMachine

    When known_tokens is given, tokens missing from it are unmappable. The
    unsingularized name is tried before giving up.
    """
    if not resource_type or '.' not in resource_type:
        raise UnmappableType(f"Malformed Azure resource type: {resource_type!r}")

    segments = resource_type.split('.', 1)[1].split('/')
    if len(segments) < 2 or not segments[0] or not segments[-1]:
        raise UnmappableType(f"Malformed Azure resource type: {resource_type!r}")

    namespace = segments[0].lower()
    kind = _upper_first(segments[-1])
    token = f"{AZURE_PACKAGE}:{namespace}:{singularize(kind)}"

    if known_tokens is None or token in known_tokens:
        return token
    # Some schema types keep a plural-looking name
    if f"{AZURE_PACKAGE}:{namespace}:{kind}" in known_tokens:
        return f"{AZURE_PACKAGE}:{namespace}:{kind}"
    raise UnmappableType(
        f"{resource_type} translated to {token}, which is not in the schema"
    )


def azure_resource_name(resource_id: str) -> str:
    """Last path segment of an ARM resource id."""
    return resource_id.rstrip('/').split('/')[-1]


def azure_resource_group_id(resource_id: str) -> Optional[str]:
    """
    Resource-group id enclosing an ARM resource id, or None.

    /subscriptions/s/resourceGroups/rg/providers/... -> /subscriptions/s/resourceGroups/rg
    """
    parts = resource_id.split('/')
    # ['', 'subscriptions', sub, 'resourceGroups', rg, ...]
    if (len(parts) >= 5 and parts[1].lower() == 'subscriptions'
            and parts[3].lower() == 'resourcegroups' and parts[4]):
        return f"/subscriptions/{parts[2]}/resourceGroups/{parts[4]}"
    return None


# =============================================================================
# Kubernetes
# =============================================================================

def kubernetes_type_token(group: str, version: str, kind: str) -> str:
    """
    kubernetes:<group>/<version>:<Kind>, with the empty group spelled "core".
    """
    if not version or not kind:
        raise UnmappableType(f"Incomplete Kubernetes kind: group={group!r} version={version!r} kind={kind!r}")
    return f"{KUBERNETES_PACKAGE}:{group or KUBERNETES_CORE_GROUP}/{version}:{kind}"


def split_api_version(api_version: str) -> tuple:
    """apps/v1 -> ("apps", "v1"); v1 -> ("", "v1")."""
    if '/' in api_version:
        group, version = api_version.split('/', 1)
        return group, version
    return '', api_version


def kubernetes_identity(name: str, namespace: Optional[str] = None) -> str:
    """namespace/name for namespaced objects, name otherwise."""
    if namespace:
        return f"{namespace}/{name}"
    return name
