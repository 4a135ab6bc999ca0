"""
Constants for the cloud import tools.

This module defines all magic strings and numbers used across the codebase
to prevent typos, ensure consistency, and make maintenance easier.
"""

# =============================================================================
# Cloud Providers
# =============================================================================

PROVIDER_AWS = "aws"
PROVIDER_AZURE = "azure"
PROVIDER_KUBERNETES = "kubernetes"

# Worker defaults differ because each provider throttles listing calls differently
DEFAULT_WORKERS = {
    PROVIDER_AWS: 3,
    PROVIDER_AZURE: 10,
    PROVIDER_KUBERNETES: 10,
}

# =============================================================================
# Run Modes
# =============================================================================

MODE_EXPORT = "export"
MODE_REGISTER = "register"
MODE_INCREMENTAL = "incremental"

RUN_MODES = (MODE_EXPORT, MODE_REGISTER, MODE_INCREMENTAL)

# =============================================================================
# Output Defaults
# =============================================================================

DEFAULT_OUTPUT = "import.json"
DEFAULT_PROJECT = "cloud-import"
DEFAULT_STACK = "dev"

# =============================================================================
# Package Schemas
# =============================================================================

SCHEMA_URLS = {
    PROVIDER_AWS: "https://raw.githubusercontent.com/pulumi/pulumi-aws-native/master/provider/cmd/pulumi-resource-aws-native/schema.json",
    PROVIDER_AZURE: "https://raw.githubusercontent.com/pulumi/pulumi-azure-native/master/provider/cmd/pulumi-resource-azure-native/schema.json",
}

SCHEMA_FETCH_TIMEOUT = 120.0
SCHEMA_FETCH_ATTEMPTS = 3

# =============================================================================
# AWS (Cloud Control)
# =============================================================================

AWS_PACKAGE = "aws-native"
AWS_PAGE_SIZE = 100
AWS_MAX_RETRY_ATTEMPTS = 1000

# Types whose Cloud Control listing is broken or requires extra input
AWS_SKIP_TYPES = frozenset({
    "aws-native:cloudformation:PublicTypeVersion",
    "aws-native:athena:DataCatalog",
    "aws-native:appflow:Connector",
    "aws-native:efs:FileSystem",
    "aws-native:route53resolver:ResolverRule",
})

# =============================================================================
# Azure (Resource Manager)
# =============================================================================

AZURE_PACKAGE = "azure-native"
AZURE_DEFAULT_LOCATION = "westus2"
AZURE_RESOURCE_GROUP_TOKEN = "azure-native:resources:ResourceGroup"
AZURE_MANAGEMENT_SCOPE = "https://management.azure.com/.default"

# =============================================================================
# Kubernetes
# =============================================================================

KUBERNETES_PACKAGE = "kubernetes"
KUBERNETES_CORE_GROUP = "core"
KUBERNETES_PAGE_SIZE = 500
