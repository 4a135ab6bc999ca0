"""
Tests for cloudimport/utils.py utility functions.

Covers:
- generate_run_id format and uniqueness
- retry_with_backoff decorator
- AuthError and is_auth_error detection
- check_and_raise_auth_error
- setup_logging levels and log file
- write_json (local files)
- print_summary_table formatting
- ProgressTracker plain output and counters
"""
import json
import logging
import os
import stat
import sys
import threading
from unittest.mock import patch

import pytest
from botocore.exceptions import ClientError, NoCredentialsError

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cloudimport.errors import AuthError, FatalSetupFailure
from cloudimport.utils import (
    ProgressTracker,
    check_and_raise_auth_error,
    generate_run_id,
    is_auth_error,
    print_summary_table,
    retry_with_backoff,
    setup_logging,
    write_json,
)


def client_error(code):
    return ClientError({'Error': {'Code': code, 'Message': 'nope'}}, 'ListResources')


def named_exception(name, **attrs):
    """Build an exception whose class name matches a provider SDK type."""
    exc = type(name, (Exception,), {})("failure")
    for key, value in attrs.items():
        setattr(exc, key, value)
    return exc


# =============================================================================
# generate_run_id Tests
# =============================================================================

class TestGenerateRunId:
    """Tests for generate_run_id function."""

    def test_run_id_format(self):
        """Run ID looks like YYYYMMDD-HHMMSS-xxxxxxxx"""
        parts = generate_run_id().split('-')

        assert len(parts) == 3
        assert len(parts[0]) == 8 and parts[0].isdigit()
        assert len(parts[1]) == 6 and parts[1].isdigit()
        assert len(parts[2]) == 8

    def test_run_id_uniqueness(self):
        ids = [generate_run_id() for _ in range(100)]
        assert len(set(ids)) == 100


# =============================================================================
# retry_with_backoff Tests
# =============================================================================

class TestRetryWithBackoff:
    """Tests for retry_with_backoff decorator."""

    def test_no_retry_on_success(self):
        calls = []

        @retry_with_backoff(max_attempts=3, min_wait=0, max_wait=0)
        def succeed():
            calls.append(1)
            return "ok"

        assert succeed() == "ok"
        assert len(calls) == 1

    def test_retry_on_failure(self):
        calls = []

        @retry_with_backoff(max_attempts=3, min_wait=0, max_wait=0)
        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("temporary")
            return "ok"

        assert flaky() == "ok"
        assert len(calls) == 3

    def test_max_attempts_exceeded(self):
        calls = []

        @retry_with_backoff(max_attempts=2, min_wait=0, max_wait=0)
        def always_fails():
            calls.append(1)
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            always_fails()
        assert len(calls) == 2

    def test_specific_exception_types(self):
        calls = []

        @retry_with_backoff(max_attempts=3, min_wait=0, max_wait=0, exceptions=(ConnectionError,))
        def wrong_error():
            calls.append(1)
            raise ValueError("not retried")

        with pytest.raises(ValueError):
            wrong_error()
        assert len(calls) == 1


# =============================================================================
# Auth Error Tests
# =============================================================================

class TestIsAuthError:
    """Tests for is_auth_error detection."""

    @pytest.mark.parametrize("code", ["AccessDeniedException", "ExpiredToken", "InvalidClientTokenId"])
    def test_aws_auth_codes(self, code):
        assert is_auth_error(client_error(code))

    def test_aws_other_code(self):
        assert not is_auth_error(client_error("ThrottlingException"))

    def test_aws_no_credentials(self):
        assert is_auth_error(NoCredentialsError())

    def test_azure_client_authentication(self):
        assert is_auth_error(named_exception("ClientAuthenticationError"))

    @pytest.mark.parametrize("status,expected", [(401, True), (403, True), (404, False), (500, False)])
    def test_azure_http_status(self, status, expected):
        assert is_auth_error(named_exception("HttpResponseError", status_code=status)) == expected

    @pytest.mark.parametrize("status,expected", [(401, True), (403, True), (410, False)])
    def test_kubernetes_api_status(self, status, expected):
        assert is_auth_error(named_exception("ApiException", status=status)) == expected

    def test_generic_exception(self):
        assert not is_auth_error(RuntimeError("boom"))


class TestCheckAndRaiseAuthError:
    """Tests for check_and_raise_auth_error."""

    def test_raises_for_auth_error(self):
        original = client_error("AccessDenied")

        with pytest.raises(AuthError) as exc_info:
            check_and_raise_auth_error(original, "list types", "aws")

        assert exc_info.value.provider == "aws"
        assert exc_info.value.original_error is original
        assert "list types" in str(exc_info.value)

    def test_auth_error_is_fatal(self):
        with pytest.raises(FatalSetupFailure):
            check_and_raise_auth_error(NoCredentialsError(), "verify credentials", "aws")

    def test_passes_through_other_errors(self):
        check_and_raise_auth_error(client_error("Throttling"), "list types", "aws")


# =============================================================================
# setup_logging Tests
# =============================================================================

class TestSetupLogging:
    """Tests for setup_logging."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self, monkeypatch):
        monkeypatch.delenv('CLOUD_IMPORT_DEBUG', raising=False)
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        for handler in root.handlers:
            handler.close()
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_default_level(self):
        setup_logging()
        assert logging.getLogger().level == logging.INFO

    def test_case_insensitive(self):
        setup_logging("warning")
        assert logging.getLogger().level == logging.WARNING

    def test_debug_env_forces_debug(self, monkeypatch):
        monkeypatch.setenv('CLOUD_IMPORT_DEBUG', '1')
        setup_logging("ERROR")
        assert logging.getLogger().level == logging.DEBUG

    def test_log_file(self, tmp_path):
        setup_logging("INFO", output_dir=str(tmp_path / "logs"))
        files = os.listdir(tmp_path / "logs")
        assert len(files) == 1
        assert files[0].startswith("cloud_import_log_")


# =============================================================================
# Output Tests
# =============================================================================

class TestWriteJson:
    """Tests for write_json function."""

    def test_write_local_file(self, tmp_path):
        path = tmp_path / "nested" / "import.json"
        data = {"nameTable": {}, "resources": [{"type": "T:m:K", "name": "n", "id": "i"}]}

        write_json(data, str(path))

        with open(path) as f:
            assert json.load(f) == data
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    def test_overwrites_existing(self, tmp_path):
        path = tmp_path / "import.json"
        path.write_text("x" * 1000)

        write_json({"a": 1}, str(path))

        with open(path) as f:
            assert json.load(f) == {"a": 1}

    @patch("cloudimport.utils.write_to_s3")
    def test_s3_path_delegates(self, mock_s3):
        write_json({"a": 1}, "s3://bucket/key.json")
        mock_s3.assert_called_once_with({"a": 1}, "s3://bucket/key.json")


class TestPrintSummaryTable:
    """Tests for print_summary_table."""

    def test_table(self, capsys):
        print_summary_table([
            {"type_token": "aws-native:ec2:Instance", "resource_count": 2},
            {"type_token": "aws-native:s3:Bucket", "resource_count": 5},
        ])
        out = capsys.readouterr().out

        assert "Type" in out and "Count" in out
        assert "aws-native:s3:Bucket" in out
        total_line = [line for line in out.splitlines() if line.startswith("TOTAL")][0]
        assert total_line.split("|")[1].strip() == "7"

    def test_empty(self, capsys):
        print_summary_table([])
        assert "No resources found." in capsys.readouterr().out


# =============================================================================
# ProgressTracker Tests
# =============================================================================

class TestProgressTracker:
    """Tests for ProgressTracker without a TTY."""

    def test_plain_output(self, capsys):
        with ProgressTracker("AWS", show_progress=False) as tracker:
            tracker.set_total(3)
            tracker.complete_type("aws-native:s3:Bucket")
            tracker.complete_type("aws-native:ec2:Instance", failed=True)
            tracker.add_resources(4)

        out = capsys.readouterr().out
        assert "AWS Discovery Starting" in out
        assert "[aws-native:ec2:Instance] Failed" in out
        assert "Total Resources: 4" in out
        assert tracker.completed_types == 2
        assert tracker.failed_types == 1

    def test_counters_thread_safe(self):
        tracker = ProgressTracker("K8S", show_progress=False)
        threads = [
            threading.Thread(target=lambda: [tracker.add_resources() for _ in range(500)])
            for _ in range(8)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert tracker.total_resources == 4000

    def test_rich_disabled_without_tty(self):
        with patch("sys.stdout") as mock_stdout:
            mock_stdout.isatty.return_value = False
            assert not ProgressTracker("AWS").show_progress
