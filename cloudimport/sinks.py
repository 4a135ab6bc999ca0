"""
Consumers of discovered records.

- write_inventory: serialize the inventory as a Pulumi import file
- PulumiImporter: run `pulumi import` per record, or once for a whole file
- PulumiRegistrar: read each record into a running Pulumi program as an
  externally managed resource
"""
import logging
import subprocess
from typing import Any, Callable, Dict, List, Optional

import pulumi
from pulumi import automation as auto

from cloudimport.errors import FatalSetupFailure, SideEffectFailure
from cloudimport.models import CanonicalRecord, Inventory
from cloudimport.utils import write_json

logger = logging.getLogger(__name__)


def write_inventory(inventory: Inventory, filepath: str) -> Dict[str, Any]:
    """
    Write the inventory as an import file.

    Raises:
        FatalSetupFailure: If the file cannot be written
    """
    document = inventory.to_import_file()
    try:
        write_json(document, filepath)
    except Exception as e:
        raise FatalSetupFailure(f"Failed to write inventory to {filepath}: {e}") from e
    return document


class PulumiImporter:
    """Runs the pulumi CLI import command."""

    def __init__(self, stack: Optional[str] = None, cwd: Optional[str] = None,
                 pulumi_bin: str = "pulumi"):
        self.stack = stack
        self.cwd = cwd
        self.pulumi_bin = pulumi_bin

    def _stack_args(self) -> List[str]:
        return ['--stack', self.stack] if self.stack else []

    def _run(self, cmd: List[str]) -> subprocess.CompletedProcess:
        logger.debug(f"Running: {' '.join(cmd)}")
        return subprocess.run(cmd, capture_output=True, text=True, cwd=self.cwd)

    def import_record(self, record: CanonicalRecord) -> None:
        """
        Import a single record.

        Raises:
            SideEffectFailure: If the command cannot run or exits non-zero
        """
        cmd = [
            self.pulumi_bin, 'import', '--yes', '--skip-preview',
            *self._stack_args(),
            record.type_token, record.display_name, record.identity,
        ]
        try:
            result = self._run(cmd)
        except OSError as e:
            raise SideEffectFailure(f"Could not run {self.pulumi_bin}: {e}") from e

        if result.returncode != 0:
            detail = (result.stderr or result.stdout or '').strip().splitlines()
            raise SideEffectFailure(
                f"pulumi import {record.type_token} {record.identity} exited "
                f"{result.returncode}: {detail[-1] if detail else 'no output'}"
            )
        logger.info(f"Imported {record.type_token} {record.identity}")

    __call__ = import_record

    def bulk_import(self, import_file: str) -> bool:
        """Import every resource in an import file. Returns True on success."""
        cmd = [self.pulumi_bin, 'import', '-p', '1', '-f', import_file, '--yes', *self._stack_args()]
        print(f"Running bulk import from {import_file}...")
        try:
            result = subprocess.run(cmd, cwd=self.cwd)
        except OSError as e:
            logger.error(f"Could not run {self.pulumi_bin}: {e}")
            return False
        if result.returncode != 0:
            logger.error(f"Bulk import exited with status {result.returncode}")
            return False
        return True


class PulumiRegistrar:
    """
    Reads records into the current Pulumi program.

    Handles are kept by identity so that children can be parented to a
    record registered earlier in the same run.
    """

    def __init__(self):
        self.handles: Dict[str, pulumi.Resource] = {}

    def register(self, record: CanonicalRecord) -> pulumi.Resource:
        """
        Raises:
            SideEffectFailure: If the resource cannot be registered
        """
        parent = self.handles.get(record.parent) if record.parent else None
        opts = pulumi.ResourceOptions(id=record.identity, parent=parent)
        try:
            handle = pulumi.CustomResource(record.type_token, record.display_name, {}, opts=opts)
        except Exception as e:
            raise SideEffectFailure(f"Failed to register {record.type_token} {record.identity}: {e}") from e
        self.handles[record.identity] = handle
        return handle

    __call__ = register


def run_register_program(program: Callable[[], None], project_name: str, stack_name: str,
                         work_dir: Optional[str] = None) -> bool:
    """
    Run an inline Pulumi program with `up`.

    Returns True if the update succeeded. Failed reads inside the update are
    logged, not raised.

    Raises:
        FatalSetupFailure: If the stack cannot be created or selected
    """
    opts = auto.LocalWorkspaceOptions(work_dir=work_dir) if work_dir else None
    try:
        stack = auto.create_or_select_stack(
            stack_name=stack_name,
            project_name=project_name,
            program=program,
            opts=opts,
        )
    except Exception as e:
        raise FatalSetupFailure(f"Failed to select stack {project_name}/{stack_name}: {e}") from e

    logger.info(f"Registering resources into stack {project_name}/{stack_name}")
    try:
        result = stack.up(on_output=logger.debug)
    except auto.CommandError as e:
        logger.warning(f"Stack update finished with errors: {e}")
        return False

    changes = result.summary.resource_changes or {}
    logger.info(f"Stack update complete: {dict(changes)}")
    return True
