#!/usr/bin/env python3
"""
Cloud Import - Merge Import Files

Merges several import files (e.g. one per provider, region or cluster) into
a single file that `pulumi import -f` can consume.

Resources are deduplicated on (type, id); the first occurrence wins. Name
tables are merged, later files overriding earlier ones.

Usage:
    python scripts/merge_inventories.py aws-import.json k8s-import.json -o import.json
    python scripts/merge_inventories.py ./imports/*.json --dry-run
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))
from cloudimport.utils import write_json


def load_json_file(filepath: Path) -> Optional[Dict[str, Any]]:
    """Load a JSON file, returning None on error."""
    try:
        with open(filepath, 'r') as f:
            return json.load(f)
    except (json.JSONDecodeError, IOError) as e:
        print(f"  WARNING: Could not load {filepath}: {e}")
        return None


def merge_import_files(files: List[Path]) -> Tuple[Dict[str, Any], Dict[str, int]]:
    """
    Merge import files into one document.

    Returns:
        Tuple of (merged_document, stats_dict)
    """
    merged: Dict[str, Any] = {
        "nameTable": {},
        "resources": [],
    }

    stats = {
        "files_processed": 0,
        "files_skipped": 0,
        "total_resources": 0,
        "duplicate_resources": 0,
    }

    seen = set()

    for path in files:
        data = load_json_file(path)
        if not isinstance(data, dict) or not isinstance(data.get("resources"), list):
            stats["files_skipped"] += 1
            continue

        stats["files_processed"] += 1
        merged["nameTable"].update(data.get("nameTable") or {})

        for resource in data["resources"]:
            key = (resource.get("type", ""), resource.get("id", ""))
            if key in seen:
                stats["duplicate_resources"] += 1
                continue
            seen.add(key)
            merged["resources"].append(resource)
            stats["total_resources"] += 1

    return merged, stats


def main():
    parser = argparse.ArgumentParser(
        description="Merge import files into one",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Merge two provider exports
  python scripts/merge_inventories.py aws-import.json azure-import.json -o import.json

  # See what would be merged without writing files
  python scripts/merge_inventories.py ./imports/*.json --dry-run
"""
    )
    parser.add_argument("files", nargs="+", help="Import files to merge")
    parser.add_argument("-o", "--output", default="import.json",
                        help="Merged import file (default: import.json)")
    parser.add_argument("--dry-run", action="store_true",
                        help="Show what would be merged without writing files")

    args = parser.parse_args()

    files = [Path(f) for f in args.files]
    print(f"Merging {len(files)} import files...")

    merged, stats = merge_import_files(files)

    print(f"  Files processed:     {stats['files_processed']}")
    print(f"  Files skipped:       {stats['files_skipped']}")
    print(f"  Resources:           {stats['total_resources']}")
    print(f"  Duplicates removed:  {stats['duplicate_resources']}")

    if not stats["files_processed"]:
        print("ERROR: No valid import files found")
        sys.exit(1)

    if args.dry_run:
        print("\nDry run - no files written")
        return

    write_json(merged, args.output)


if __name__ == "__main__":
    main()
