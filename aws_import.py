#!/usr/bin/env python3
"""
Cloud Import - AWS Resource Discovery

Lists every resource of every aws-native type through the Cloud Control API
and writes a Pulumi import file, imports each resource as it is found, or
reads each one into a Pulumi stack.

Usage:
    # Export an import file for the current credentials
    python3 aws_import.py
    python3 aws_import.py --profile prod --region us-east-1 -o ./prod-import.json

    # Export, then run `pulumi import -f import.json`
    python3 aws_import.py --run-import

    # Import each resource as it is discovered
    python3 aws_import.py --mode incremental --stack dev

    # Read resources into a stack without importing them
    python3 aws_import.py --mode register --project brownfield --stack dev
"""
import argparse
import logging
import sys
from typing import Any, Dict, List, Optional

import boto3
from botocore.config import Config

# Add repo root to path for imports
sys.path.insert(0, '.')
from cloudimport.catalog import PackageSchema, load_schema
from cloudimport.config import RunConfig
from cloudimport.constants import (
    AWS_MAX_RETRY_ATTEMPTS,
    AWS_PAGE_SIZE,
    AWS_SKIP_TYPES,
    DEFAULT_WORKERS,
    PROVIDER_AWS,
    SCHEMA_URLS,
)
from cloudimport.errors import FatalSetupFailure, UnmappableType
from cloudimport.mapper import aws_display_name, cloudcontrol_type_name, split_type_token
from cloudimport.models import CanonicalRecord, ListPage, ResourceTypeDescriptor
from cloudimport.provider import ProviderAdapter
from cloudimport.runner import COMMON_EPILOG, add_common_arguments, run
from cloudimport.utils import check_and_raise_auth_error

logger = logging.getLogger(__name__)


# =============================================================================
# Session Management
# =============================================================================

def get_session(profile: Optional[str] = None, region: Optional[str] = None) -> boto3.Session:
    """Create boto3 session."""
    return boto3.Session(profile_name=profile, region_name=region)


def get_account_id(session: boto3.Session) -> str:
    """Get AWS account ID."""
    sts = session.client('sts')
    return sts.get_caller_identity()['Account']


def get_cloudcontrol_client(session: boto3.Session):
    """Cloud Control client with a large retry budget to ride out throttling."""
    config = Config(retries={'max_attempts': AWS_MAX_RETRY_ATTEMPTS, 'mode': 'standard'})
    return session.client('cloudcontrol', config=config)


# =============================================================================
# Adapter
# =============================================================================

class AwsAdapter(ProviderAdapter):
    """Cloud Control listing for every aws-native resource type."""

    name = PROVIDER_AWS
    default_workers = DEFAULT_WORKERS[PROVIDER_AWS]
    skip_types = AWS_SKIP_TYPES

    def __init__(self, schema: PackageSchema, profile: Optional[str] = None,
                 region: Optional[str] = None):
        self.schema = schema
        self.namespaces: Dict[str, str] = dict(schema.csharp_namespaces)
        self.profile = profile
        self.region = region

    def new_client(self):
        # Sessions are not thread safe, so each worker gets its own
        return get_cloudcontrol_client(get_session(self.profile, self.region))

    def load_catalog(self, parents: List[CanonicalRecord]) -> List[ResourceTypeDescriptor]:
        descriptors = []
        for token in self.schema.resource_tokens:
            try:
                _, module, _ = split_type_token(token)
                listing_key = cloudcontrol_type_name(token, self.namespaces)
            except UnmappableType:
                module, listing_key = '', ''
            descriptors.append(ResourceTypeDescriptor(type_id=token, namespace=module,
                                                      listing_key=listing_key))
        return descriptors

    def type_token(self, descriptor: ResourceTypeDescriptor) -> Optional[str]:
        if not descriptor.listing_key:
            raise UnmappableType(f"No Cloud Control type for {descriptor.type_id}")
        return descriptor.type_id

    def list_page(self, client: Any, descriptor: ResourceTypeDescriptor,
                  cursor: Optional[str]) -> ListPage:
        kwargs: Dict[str, Any] = {'TypeName': descriptor.listing_key, 'MaxResults': AWS_PAGE_SIZE}
        if cursor:
            kwargs['NextToken'] = cursor
        response = client.list_resources(**kwargs)

        items = [d for d in response.get('ResourceDescriptions', []) if d.get('Identifier')]
        # A missing or empty NextToken is the last page
        return ListPage(items=items, next_cursor=response.get('NextToken') or None)

    def build_record(self, descriptor: ResourceTypeDescriptor, type_token: Optional[str],
                     item: Any) -> CanonicalRecord:
        token = type_token or descriptor.type_id
        identifier = item['Identifier']
        return CanonicalRecord(
            type_token=token,
            identity=identifier,
            display_name=aws_display_name(token, identifier, self.namespaces),
            version=self.schema.version or None,
        )


def create_adapter(run_config: RunConfig) -> AwsAdapter:
    """
    Verify credentials and load the aws-native catalog.

    Raises:
        FatalSetupFailure: If credentials or the schema are unusable
    """
    options = run_config.provider_options
    profile = options.get('profile')
    region = options.get('region')

    try:
        session = get_session(profile, region)
        account_id = get_account_id(session)
    except Exception as e:
        check_and_raise_auth_error(e, "verify AWS credentials", PROVIDER_AWS)
        raise FatalSetupFailure(f"Failed to verify AWS credentials: {e}") from e
    logger.info(f"Using AWS account {account_id} ({session.region_name or 'default region'})")

    schema = load_schema(SCHEMA_URLS[PROVIDER_AWS], run_config.schema)
    return AwsAdapter(schema, profile=profile, region=region)


def main():
    parser = argparse.ArgumentParser(
        description='Cloud Import - AWS Resource Discovery',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Export an import file for the current credentials
  python3 aws_import.py

  # Specific profile and region, more workers
  python3 aws_import.py --profile prod --region eu-west-1 --workers 5

  # Skip types that fail in this account
  python3 aws_import.py --skip-types aws-native:ec2:Instance,aws-native:s3:Bucket
""" + COMMON_EPILOG
    )
    add_common_arguments(parser, PROVIDER_AWS)
    parser.add_argument('--profile', help='AWS profile name')
    parser.add_argument('--region', help='AWS region to list resources in')

    args = parser.parse_args()
    sys.exit(run(PROVIDER_AWS, create_adapter, args))


if __name__ == '__main__':
    main()
