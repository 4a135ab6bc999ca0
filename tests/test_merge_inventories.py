"""
Tests for scripts/merge_inventories.py.

Covers:
- Merging resources from several import files
- Dedup on (type, id), first occurrence wins
- nameTable merge
- Invalid and non-import files skipped
"""
import json
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'scripts'))

from merge_inventories import load_json_file, merge_import_files


def write(path, data):
    path.write_text(json.dumps(data) if not isinstance(data, str) else data)
    return path


class TestMergeImportFiles:
    """Tests for merge_import_files."""

    def test_merge_and_dedup(self, tmp_path):
        aws = write(tmp_path / "aws.json", {
            "nameTable": {"provider": "urn:a"},
            "resources": [
                {"type": "aws-native:s3:Bucket", "name": "S3Bucketlogs", "id": "logs"},
                {"type": "aws-native:ec2:Instance", "name": "EC2Instancei1", "id": "i-1"},
            ],
        })
        aws_again = write(tmp_path / "aws2.json", {
            "nameTable": {"provider": "urn:b"},
            "resources": [
                {"type": "aws-native:s3:Bucket", "name": "other", "id": "logs"},
                {"type": "kubernetes:core/v1:Pod", "name": "defaulta", "id": "default/a"},
            ],
        })

        merged, stats = merge_import_files([aws, aws_again])

        assert [r["id"] for r in merged["resources"]] == ["logs", "i-1", "default/a"]
        assert merged["resources"][0]["name"] == "S3Bucketlogs"
        assert merged["nameTable"] == {"provider": "urn:b"}
        assert stats["duplicate_resources"] == 1
        assert stats["total_resources"] == 3
        assert stats["files_processed"] == 2

    def test_invalid_files_skipped(self, tmp_path):
        good = write(tmp_path / "good.json", {"resources": [{"type": "T:m:K", "name": "n", "id": "1"}]})
        broken = write(tmp_path / "broken.json", "{nope")
        other = write(tmp_path / "other.json", {"accounts": []})

        merged, stats = merge_import_files([good, broken, other, tmp_path / "missing.json"])

        assert len(merged["resources"]) == 1
        assert stats["files_skipped"] == 3

    def test_empty(self):
        merged, stats = merge_import_files([])
        assert merged == {"nameTable": {}, "resources": []}
        assert stats["files_processed"] == 0


def test_load_json_file_error(tmp_path):
    assert load_json_file(tmp_path / "missing.json") is None
