"""
Utility functions for the cloud import tools.

Logging Level Standards:
------------------------
- ERROR: Setup failures that stop the run
         "Failed to load aws-native schema: {e}"
- WARNING: Partial failures that abandon one type, item or record
           "Listing AWS::EC2::Instance failed: {e}"
           "Skipping Microsoft.Foo/bars: not in the schema"
- INFO: Progress messages, resource counts
        "Discovered 42 resources"
        "Listing 1200 types with 3 workers..."
- DEBUG: Per-item skips that don't affect the inventory
         "Skipping duplicate {identity}"
"""
import json
import logging
import os
import sys
import threading
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, TypeVar

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from cloudimport.errors import AuthError

if TYPE_CHECKING:
    from rich.progress import TaskID

logger = logging.getLogger(__name__)

# Type variable for generic function decorator
F = TypeVar('F', bound=Callable[..., Any])


def retry_with_backoff(
    max_attempts: int = 3,
    min_wait: float = 1,
    max_wait: float = 60,
    exceptions: tuple = (Exception,)
) -> Callable[[F], F]:
    """
    Decorator for retrying functions with exponential backoff.

    Args:
        max_attempts: Maximum number of retry attempts (default: 3)
        min_wait: Minimum wait time between retries in seconds (default: 1)
        max_wait: Maximum wait time between retries in seconds (default: 60)
        exceptions: Tuple of exception types to retry on (default: all Exceptions)

    Returns:
        Decorated function with retry logic

    Example:
        @retry_with_backoff(max_attempts=5, exceptions=(httpx.TransportError,))
        def fetch():
            ...
    """
    def decorator(func: F) -> F:
        return retry(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
            retry=retry_if_exception_type(exceptions),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True
        )(func)
    return decorator


# =============================================================================
# Progress Tracking
# =============================================================================

class ProgressTracker:
    """
    Progress tracker for discovery runs with rich display.

    Falls back to simple print statements if stdout is not a TTY
    (e.g., when piping output). Methods may be called from worker threads.

    Usage:
        with ProgressTracker("AWS", total_types=1200) as tracker:
            ...
            tracker.complete_type("aws-native:ec2:Instance")   # from a worker
            tracker.add_resources(1)                            # from the aggregator
    """

    def __init__(self, provider: str, total_types: int = 0, show_progress: bool = True):
        self.provider = provider
        self.total_types = total_types
        self.show_progress = show_progress and sys.stdout.isatty()

        # Counters
        self.completed_types = 0
        self.failed_types = 0
        self.total_resources = 0
        self._lock = threading.Lock()

        self._console: Optional[Console] = None
        self._progress: Optional[Progress] = None
        self._main_task: Optional["TaskID"] = None
        self._use_rich = self.show_progress

    def __enter__(self):
        if self._use_rich:
            self._console = Console()
            self._progress = Progress(
                SpinnerColumn(),
                TextColumn("[bold blue]{task.description}"),
                BarColumn(),
                MofNCompleteColumn(),
                TimeElapsedColumn(),
                console=self._console,
                transient=False,
            )
            self._main_task = self._progress.add_task(
                f"{self.provider} Discovery", total=self.total_types or 1
            )
            self._progress.start()
        else:
            print(f"\n{'='*60}")
            print(f"{self.provider} Discovery Starting")
            print(f"{'='*60}")
            if self.total_types:
                print(f"Types: {self.total_types}")
            print()

        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._use_rich:
            assert self._progress is not None
            assert self._console is not None
            self._progress.stop()
            self._console.print()
            self._print_summary_rich()
        else:
            self._print_summary_plain()
        return False

    def set_total(self, total_types: int):
        """Set the number of types once the catalog is known."""
        self.total_types = total_types
        if self._use_rich:
            assert self._progress is not None
            assert self._main_task is not None
            self._progress.update(self._main_task, total=total_types or 1)
        elif total_types:
            print(f"Types: {total_types}")

    def add_resources(self, count: int = 1):
        """Add discovered resources to the running total."""
        with self._lock:
            self.total_resources += count
            total = self.total_resources
        if self._use_rich:
            assert self._progress is not None
            assert self._main_task is not None
            self._progress.update(
                self._main_task,
                description=f"{self.provider} Discovery ({total:,} resources)"
            )

    def complete_type(self, type_id: str, failed: bool = False):
        """Mark one type as finished (listed, skipped or failed)."""
        with self._lock:
            self.completed_types += 1
            if failed:
                self.failed_types += 1
        if self._use_rich:
            assert self._progress is not None
            assert self._main_task is not None
            self._progress.update(self._main_task, advance=1)
        elif failed:
            print(f"  [{type_id}] Failed")

    def _print_summary_rich(self):
        """Print a formatted summary using rich."""
        table = Table(title=f"{self.provider} Discovery Summary", show_header=False)
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="green")

        if self.total_types:
            table.add_row("Types", f"{self.completed_types:,} / {self.total_types:,}")
        if self.failed_types:
            table.add_row("Failed Types", f"{self.failed_types:,}")
        table.add_row("Total Resources", f"{self.total_resources:,}")

        assert self._console is not None
        self._console.print(Panel(table))

    def _print_summary_plain(self):
        """Print a plain text summary."""
        print(f"\n{'='*60}")
        print(f"{self.provider} Discovery Complete")
        print(f"{'='*60}")
        if self.total_types:
            print(f"  Types:           {self.completed_types:,} / {self.total_types:,}")
        if self.failed_types:
            print(f"  Failed Types:    {self.failed_types:,}")
        print(f"  Total Resources: {self.total_resources:,}")
        print()


def generate_run_id() -> str:
    """Generate a unique run ID."""
    return f"{datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S')}-{str(uuid.uuid4())[:8]}"


# =============================================================================
# Auth Error Detection
# =============================================================================

# AWS error codes that indicate auth/permission issues
AWS_AUTH_ERROR_CODES = {
    'AccessDenied', 'AccessDeniedException', 'UnauthorizedAccess',
    'UnauthorizedOperation', 'InvalidClientTokenId', 'ExpiredToken',
    'ExpiredTokenException', 'AuthFailure', 'InvalidIdentityToken',
    'CredentialsNotFound', 'SignatureDoesNotMatch',
}

# Azure and Kubernetes status codes that indicate auth/permission issues
HTTP_AUTH_STATUS_CODES = {401, 403}


def is_auth_error(exc: Exception) -> bool:
    """
    Check if an exception represents an authentication/authorization error.

    Detects auth errors across providers:
    - AWS: ClientError with specific error codes, NoCredentialsError
    - Azure: HttpResponseError with 401/403 status, ClientAuthenticationError
    - Kubernetes: ApiException with 401/403 status
    """
    # Matched by class name anywhere in the MRO
    exc_type_names = {cls.__name__ for cls in type(exc).__mro__}

    # AWS - botocore ClientError
    if 'ClientError' in exc_type_names:
        error_code = getattr(exc, 'response', {}).get('Error', {}).get('Code', '')
        return error_code in AWS_AUTH_ERROR_CODES
    if exc_type_names & {'NoCredentialsError', 'PartialCredentialsError'}:
        return True

    # Azure
    if 'ClientAuthenticationError' in exc_type_names:
        return True
    if 'HttpResponseError' in exc_type_names:
        status_code = getattr(exc, 'status_code', None)
        if status_code in HTTP_AUTH_STATUS_CODES:
            return True
        error_msg = str(exc).lower()
        return 'authentication' in error_msg or 'authorization' in error_msg

    # Kubernetes
    if 'ApiException' in exc_type_names:
        return getattr(exc, 'status', None) in HTTP_AUTH_STATUS_CODES

    return False


def check_and_raise_auth_error(exc: Exception, context: str, provider: str) -> None:
    """
    Check if exception is an auth error and raise AuthError if so.

    Call this in exception handlers before logging and continuing.
    If the exception is an auth error, raises AuthError to fail early.
    Otherwise, returns normally so the caller can log and continue.

    Raises:
        AuthError: If exc is an authentication/authorization error
    """
    if is_auth_error(exc):
        raise AuthError(
            f"Authentication/authorization error while trying to {context}: {exc}",
            provider=provider,
            original_error=exc
        ) from exc


# =============================================================================
# Logging
# =============================================================================

def setup_logging(level: str = "INFO", output_dir: Optional[str] = None) -> logging.Logger:
    """
    Setup logging configuration with console and optional file output.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        output_dir: If provided, also write logs to a file in this directory

    Returns:
        Logger instance
    """
    if os.environ.get('CLOUD_IMPORT_DEBUG'):
        level = 'DEBUG'
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Clear existing handlers to avoid duplicates
    root_logger.handlers.clear()

    # Console handler (stderr)
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
        timestamp = datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')
        log_file = os.path.join(output_dir, f"cloud_import_log_{timestamp}.log")

        file_handler = logging.FileHandler(log_file, mode='w')
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

        root_logger.info(f"Logging to: {log_file}")

    return logging.getLogger(__name__)


# =============================================================================
# Output
# =============================================================================

def write_json(data: Any, filepath: str) -> None:
    """Write data to JSON file with secure permissions."""
    if filepath.startswith("s3://"):
        write_to_s3(data, filepath)
        return

    directory = os.path.dirname(filepath)
    if directory:
        os.makedirs(directory, exist_ok=True)

    # Local file - create with restrictive permissions (owner read/write only)
    fd = os.open(filepath, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    try:
        f = os.fdopen(fd, 'w')
    except Exception:
        os.close(fd)
        raise
    with f:
        json.dump(data, f, indent=2, default=str)
    print(f"Wrote {filepath}")


def write_to_s3(data: Any, s3_path: str, content_type: str = "application/json") -> None:
    """Write data to S3 bucket."""
    import boto3

    # Parse S3 path: s3://bucket/key
    parts = s3_path.replace("s3://", "").split("/", 1)
    bucket = parts[0]
    key = parts[1] if len(parts) > 1 and parts[1] else "import.json"
    if key.endswith('/'):
        key = f"{key}import.json"

    if isinstance(data, str):
        body = data
    else:
        body = json.dumps(data, indent=2, default=str)

    s3 = boto3.client('s3')
    s3.put_object(
        Bucket=bucket,
        Key=key,
        Body=body,
        ContentType=content_type
    )
    print(f"Wrote s3://{bucket}/{key}")


def print_summary_table(summaries: List[Dict]) -> None:
    """Print a per-type summary table to console."""
    if not summaries:
        print("No resources found.")
        return

    headers = ["Type", "Count"]
    rows = []

    for s in summaries:
        rows.append([
            s.get("type_token", ""),
            str(s.get("resource_count", 0)),
        ])

    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))

    header_line = " | ".join(h.ljust(widths[i]) for i, h in enumerate(headers))
    separator = "-+-".join("-" * w for w in widths)

    print("\n" + header_line)
    print(separator)

    for row in rows:
        print(" | ".join(cell.ljust(widths[i]) for i, cell in enumerate(row)))

    total_count = sum(s.get("resource_count", 0) for s in summaries)
    print(separator)
    print(f"{'TOTAL'.ljust(widths[0])} | {str(total_count).ljust(widths[1])}")
    print()
