"""
Shared command-line flow for the provider import scripts.

Each provider script builds its own argparse parser, adds the common
options with add_common_arguments(), and hands an adapter factory to run().
"""
import argparse
import logging
from typing import Callable, Dict

import yaml

from cloudimport.config import RunConfig, generate_sample_config, load_config
from cloudimport.constants import (
    DEFAULT_WORKERS,
    MODE_EXPORT,
    MODE_INCREMENTAL,
    MODE_REGISTER,
    RUN_MODES,
)
from cloudimport.engine import DiscoveryResult, discover
from cloudimport.errors import FatalSetupFailure
from cloudimport.provider import ProviderAdapter
from cloudimport.sinks import (
    PulumiImporter,
    PulumiRegistrar,
    run_register_program,
    write_inventory,
)
from cloudimport.utils import (
    ProgressTracker,
    generate_run_id,
    print_summary_table,
    setup_logging,
)

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[RunConfig], ProviderAdapter]

COMMON_EPILOG = """
Run modes:
  export       Write the import file (default). Add --run-import to run
               `pulumi import -f <file>` afterwards.
  incremental  Run `pulumi import` for each resource as it is discovered.
  register     Read each resource into a Pulumi stack as externally managed.
"""


def add_common_arguments(parser: argparse.ArgumentParser, provider: str) -> None:
    """Options shared by every provider script."""
    parser.add_argument('--config', '-c', help='Path to YAML config file')
    parser.add_argument('--generate-config', action='store_true',
                        help='Generate a sample config file and exit')
    parser.add_argument('--output', '-o',
                        help='Import file to write, local path or s3://bucket/key (default: import.json)')
    parser.add_argument('--log-level', help='Logging level (default: INFO)')
    parser.add_argument('--log-dir', help='Also write a log file to this directory')
    parser.add_argument(
        '--workers', '-w',
        type=int,
        metavar='N',
        help=f'Number of concurrent workers (default: {DEFAULT_WORKERS[provider]})'
    )
    parser.add_argument('--mode', choices=RUN_MODES, help='Run mode (default: export)')
    parser.add_argument('--skip-types', help='Comma-separated list of type tokens to skip')
    parser.add_argument('--schema', help='Local package schema file instead of downloading it')
    parser.add_argument('--run-import', action='store_true',
                        help='After export, run a bulk pulumi import of the written file')
    parser.add_argument('--stack', help='Pulumi stack for register/import (default: dev)')
    parser.add_argument('--project', help='Pulumi project name for register mode')


def report(result: DiscoveryResult) -> None:
    """Print the per-type summary and totals."""
    inventory = result.inventory
    print_summary_table([s.to_dict() for s in inventory.summarize()])

    stats = result.stats.snapshot()
    if stats['types_failed'] or stats['worker_faults']:
        print(f"Types failed: {stats['types_failed']}, worker faults: {stats['worker_faults']}")
    if stats['side_effect_failures']:
        print(f"Failed register/import calls: {stats['side_effect_failures']}")
    print(f"Total resources: {len(inventory)}")


def _register(adapter: ProviderAdapter, run_config: RunConfig,
              tracker: ProgressTracker) -> DiscoveryResult:
    registrar = PulumiRegistrar()
    outcome: Dict[str, object] = {}

    def program():
        try:
            outcome['result'] = discover(
                adapter,
                num_workers=run_config.workers,
                skip_types=run_config.skip_types,
                on_record=registrar,
                progress=tracker,
            )
        except FatalSetupFailure as e:
            outcome['error'] = e
            raise

    run_register_program(program, run_config.project, run_config.stack)

    if 'error' in outcome:
        raise outcome['error']  # type: ignore[misc]
    if 'result' not in outcome:
        raise FatalSetupFailure("Register program exited before discovery completed")
    return outcome['result']  # type: ignore[return-value]


def execute(adapter: ProviderAdapter, run_config: RunConfig, show_progress: bool = True) -> DiscoveryResult:
    """
    Discover resources and hand them to the configured consumer.

    Raises:
        FatalSetupFailure: On catalog, credential or output failures
    """
    tracker = ProgressTracker(adapter.name.upper(), show_progress=show_progress)

    with tracker:
        if run_config.mode == MODE_REGISTER:
            return _register(adapter, run_config, tracker)

        on_record = None
        if run_config.mode == MODE_INCREMENTAL:
            on_record = PulumiImporter(stack=run_config.stack)

        result = discover(
            adapter,
            num_workers=run_config.workers,
            skip_types=run_config.skip_types,
            on_record=on_record,
            progress=tracker,
        )

    write_inventory(result.inventory, run_config.output)
    return result


def run(provider: str, adapter_factory: AdapterFactory, args: argparse.Namespace) -> int:
    """
    Full command flow for one provider. Returns the process exit status.
    """
    if getattr(args, 'generate_config', False):
        print(generate_sample_config())
        return 0

    setup_logging(args.log_level or 'INFO', output_dir=getattr(args, 'log_dir', None))

    try:
        config = load_config(args)
    except FileNotFoundError as e:
        logger.error(str(e))
        return 1
    except yaml.YAMLError as e:
        logger.error(f"Could not parse config file: {e}")
        return 1

    try:
        run_config = RunConfig.from_config(config, DEFAULT_WORKERS[provider], provider)
    except ValueError as e:
        logger.error(str(e))
        return 1

    if run_config.log_level.upper() != (args.log_level or 'INFO').upper():
        setup_logging(run_config.log_level, output_dir=getattr(args, 'log_dir', None))

    logger.info(f"Run {generate_run_id()}: starting {provider} discovery in {run_config.mode} mode "
                f"with {run_config.workers} workers")

    try:
        adapter = adapter_factory(run_config)
        result = execute(adapter, run_config)
    except FatalSetupFailure as e:
        logger.error(str(e))
        return 1

    report(result)

    if run_config.mode == MODE_EXPORT and run_config.run_import:
        if run_config.output.startswith('s3://'):
            logger.error("--run-import needs a local output file")
            return 1
        if not PulumiImporter(stack=run_config.stack).bulk_import(run_config.output):
            return 1

    return 0
