"""
Concurrent discovery engine.

Fan-out/fan-in over a shared queue:

    catalog -> partition() -> N ShardWorkers (thread pool)
                                   |  put(record)
                                   v
                              queue.Queue  <- _close_when_done() puts _CLOSED
                                   |
                                   v
                              Aggregator.drain() (calling thread) -> Inventory

With parent linking enabled, parent records go through the Aggregator before
any shard worker is submitted, so parents always precede their children.
"""
import logging
import queue
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from cloudimport.errors import (
    CloudImportError,
    FatalSetupFailure,
    ListingFailure,
    SideEffectFailure,
    UnmappableType,
    WorkerFault,
)
from cloudimport.models import CanonicalRecord, Inventory, ResourceTypeDescriptor
from cloudimport.provider import ProviderAdapter
from cloudimport.utils import ProgressTracker, check_and_raise_auth_error

logger = logging.getLogger(__name__)

# End-of-stream marker, put on the queue once every shard worker has returned
_CLOSED = object()

RecordHandler = Callable[[CanonicalRecord], Any]


def partition(descriptors: Iterable[ResourceTypeDescriptor],
              num_workers: int) -> List[List[ResourceTypeDescriptor]]:
    """
    Distribute descriptors across workers using round-robin.

    Always returns num_workers shards; when there are fewer descriptors than
    workers the extra shards are empty.
    """
    if num_workers < 1:
        raise ValueError(f"Worker count must be at least 1, got {num_workers}")
    shards: List[List[ResourceTypeDescriptor]] = [[] for _ in range(num_workers)]
    for i, descriptor in enumerate(descriptors):
        shards[i % num_workers].append(descriptor)
    return shards


class DiscoveryStats:
    """Run counters shared by the workers and the aggregator."""

    COUNTERS = (
        'types_listed',
        'types_skipped',
        'types_failed',
        'items_unmappable',
        'records_published',
        'records_accepted',
        'duplicates_dropped',
        'worker_faults',
        'side_effect_failures',
        'dangling_parents',
    )

    def __init__(self):
        self._lock = threading.Lock()
        self._counts: Dict[str, int] = {name: 0 for name in self.COUNTERS}

    def increment(self, counter: str, amount: int = 1) -> None:
        with self._lock:
            self._counts[counter] += amount

    def __getattr__(self, name: str) -> int:
        counts = self.__dict__.get('_counts')
        if counts is not None and name in counts:
            with self._lock:
                return counts[name]
        raise AttributeError(name)

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)


class ShardWorker:
    """
    Lists every type in one shard, one type at a time.

    Owns its listing client and its seen-set; neither is shared with any
    other worker. Faults never escape run().
    """

    def __init__(
        self,
        index: int,
        shard: List[ResourceTypeDescriptor],
        adapter: ProviderAdapter,
        out_queue: "queue.Queue[Any]",
        stats: DiscoveryStats,
        skip_types: frozenset = frozenset(),
        progress: Optional[ProgressTracker] = None,
    ):
        self.index = index
        self.shard = shard
        self.adapter = adapter
        self.out_queue = out_queue
        self.stats = stats
        self.skip_types = skip_types
        self.progress = progress
        self._seen: Set[Tuple[str, str]] = set()

    def run(self) -> None:
        if not self.shard:
            return

        try:
            client = self.adapter.new_client()
        except Exception as e:
            fault = WorkerFault(f"Worker {self.index} could not create a client: {e}")
            logger.warning(str(fault))
            self.stats.increment('worker_faults')
            self.stats.increment('types_failed', len(self.shard))
            for descriptor in self.shard:
                self._complete(descriptor, failed=True)
            return

        logger.debug(f"Worker {self.index} starting with {len(self.shard)} types")
        for descriptor in self.shard:
            try:
                failed = self.process_type(client, descriptor)
            except Exception as e:
                fault = WorkerFault(
                    f"Worker {self.index}: unexpected fault processing {descriptor.type_id}: {e}"
                )
                logger.warning(str(fault))
                self.stats.increment('worker_faults')
                failed = True
            self._complete(descriptor, failed)
        logger.debug(f"Worker {self.index} finished")

    def _complete(self, descriptor: ResourceTypeDescriptor, failed: bool) -> None:
        if self.progress:
            self.progress.complete_type(descriptor.type_id, failed=failed)

    def process_type(self, client: Any, descriptor: ResourceTypeDescriptor) -> bool:
        """List one type to completion. Returns True if the listing failed."""
        if descriptor.type_id in self.skip_types:
            logger.debug(f"Skipping excluded type {descriptor.type_id}")
            self.stats.increment('types_skipped')
            return False

        try:
            type_token = self.adapter.type_token(descriptor)
        except UnmappableType as e:
            logger.warning(f"Skipping {descriptor.type_id}: {e}")
            self.stats.increment('types_skipped')
            return False

        if type_token is not None and type_token in self.skip_types:
            logger.debug(f"Skipping excluded type {type_token}")
            self.stats.increment('types_skipped')
            return False

        try:
            self._list_all(client, descriptor, type_token)
        except ListingFailure as e:
            logger.warning(str(e))
            self.stats.increment('types_failed')
            return True

        self.stats.increment('types_listed')
        return False

    def _list_all(self, client: Any, descriptor: ResourceTypeDescriptor,
                  type_token: Optional[str]) -> None:
        cursor: Optional[str] = None
        used_cursors: Set[Optional[str]] = {None}

        while True:
            try:
                page = self.adapter.list_page(client, descriptor, cursor)
            except ListingFailure:
                raise
            except Exception as e:
                raise ListingFailure(descriptor.listing_key or descriptor.type_id, e) from e

            for item in page.items:
                self._publish(descriptor, type_token, item)

            if page.done:
                return
            if page.next_cursor in used_cursors:
                raise ListingFailure(
                    descriptor.listing_key or descriptor.type_id,
                    ValueError(f"pagination cursor {page.next_cursor!r} did not advance"),
                )
            used_cursors.add(page.next_cursor)
            cursor = page.next_cursor

    def _publish(self, descriptor: ResourceTypeDescriptor, type_token: Optional[str],
                 item: Any) -> None:
        try:
            record = self.adapter.build_record(descriptor, type_token, item)
        except UnmappableType as e:
            logger.warning(f"Skipping item of {descriptor.type_id}: {e}")
            self.stats.increment('items_unmappable')
            return

        if record.type_token in self.skip_types:
            logger.debug(f"Skipping excluded type {record.type_token} ({record.identity})")
            return

        if record.key in self._seen:
            logger.debug(f"Skipping duplicate {record.type_token} {record.identity}")
            return
        self._seen.add(record.key)

        self.out_queue.put(record)
        self.stats.increment('records_published')


class Aggregator:
    """
    Single consumer of the shared queue.

    Adds each record to the inventory, dropping any (type_token, identity)
    already present, then runs the per-record side effect if one is set.
    Side-effect failures are logged and swallowed.
    """

    def __init__(
        self,
        out_queue: "queue.Queue[Any]",
        inventory: Optional[Inventory] = None,
        on_record: Optional[RecordHandler] = None,
        stats: Optional[DiscoveryStats] = None,
        progress: Optional[ProgressTracker] = None,
    ):
        self.out_queue = out_queue
        self.inventory = inventory if inventory is not None else Inventory()
        self.on_record = on_record
        self.stats = stats or DiscoveryStats()
        self.progress = progress

    def accept(self, record: CanonicalRecord) -> bool:
        """Add one record; returns False if it was a duplicate."""
        if not self.inventory.add(record):
            logger.debug(f"Dropping duplicate {record.type_token} {record.identity}")
            self.stats.increment('duplicates_dropped')
            return False

        self.stats.increment('records_accepted')
        if self.progress:
            self.progress.add_resources(1)

        if self.on_record is not None:
            try:
                self.on_record(record)
            except Exception as e:
                failure = e if isinstance(e, SideEffectFailure) else SideEffectFailure(
                    f"{record.type_token} {record.identity}: {e}"
                )
                logger.warning(f"Side effect failed: {failure}")
                self.stats.increment('side_effect_failures')
        return True

    def drain(self) -> Inventory:
        """Consume records until the queue is closed."""
        while True:
            item = self.out_queue.get()
            if item is _CLOSED:
                break
            self.accept(item)
        return self.inventory

    def finalize(self) -> Inventory:
        """Clear dangling parents and freeze the inventory."""
        dropped = self.inventory.drop_dangling_parents()
        if dropped:
            self.stats.increment('dangling_parents', dropped)
        self.inventory.close()
        return self.inventory


def _close_when_done(futures: List[Future], out_queue: "queue.Queue[Any]") -> None:
    """Wait for every shard worker, then close the queue."""
    try:
        wait(futures)
        for future in futures:
            exc = future.exception()
            if exc is not None:
                logger.warning(f"Shard worker exited with an error: {exc}")
    finally:
        out_queue.put(_CLOSED)


@dataclass
class DiscoveryResult:
    """Outcome of one discovery run."""
    inventory: Inventory
    stats: DiscoveryStats
    num_workers: int = 0
    num_types: int = 0
    num_parents: int = 0


def _discover_parents(adapter: ProviderAdapter) -> List[CanonicalRecord]:
    try:
        client = adapter.new_client()
        return list(adapter.discover_parents(client))
    except CloudImportError:
        raise
    except Exception as e:
        check_and_raise_auth_error(e, f"list {adapter.name} parent resources", adapter.name)
        raise FatalSetupFailure(f"Failed to list {adapter.name} parent resources: {e}") from e


def _load_catalog(adapter: ProviderAdapter,
                  parents: List[CanonicalRecord]) -> List[ResourceTypeDescriptor]:
    try:
        return list(adapter.load_catalog(parents))
    except CloudImportError:
        raise
    except Exception as e:
        check_and_raise_auth_error(e, f"load the {adapter.name} type catalog", adapter.name)
        raise FatalSetupFailure(f"Failed to load the {adapter.name} type catalog: {e}") from e


def discover(
    adapter: ProviderAdapter,
    num_workers: Optional[int] = None,
    skip_types: Iterable[str] = (),
    on_record: Optional[RecordHandler] = None,
    progress: Optional[ProgressTracker] = None,
) -> DiscoveryResult:
    """
    Run one discovery pass and return the completed inventory.

    Args:
        adapter: Provider adapter supplying clients, catalog and listings
        num_workers: Shard worker count (default: adapter.default_workers)
        skip_types: Type tokens to always skip, on top of adapter.skip_types
        on_record: Per-record side effect, called from the aggregator
        progress: Optional ProgressTracker for UI updates

    Raises:
        FatalSetupFailure: If parent discovery or catalog loading fails
        ValueError: If num_workers is less than 1
    """
    workers = adapter.default_workers if num_workers is None else num_workers
    if workers < 1:
        raise ValueError(f"Worker count must be at least 1, got {workers}")

    excluded = frozenset(adapter.skip_types) | frozenset(skip_types)
    stats = DiscoveryStats()
    out_queue: "queue.Queue[Any]" = queue.Queue()
    aggregator = Aggregator(out_queue, Inventory(), on_record=on_record, stats=stats, progress=progress)

    # Phase 1: parents go through the aggregator before any worker exists
    parents: List[CanonicalRecord] = []
    if adapter.parent_linking:
        parents = _discover_parents(adapter)
        for parent in parents:
            if parent.type_token in excluded:
                continue
            aggregator.accept(parent)
        logger.info(f"Published {len(parents)} {adapter.name} parent resources")

    # Phase 2: children
    catalog = _load_catalog(adapter, parents)
    shards = partition(catalog, workers)
    if progress:
        progress.set_total(len(catalog))
    logger.info(f"Listing {len(catalog)} types with {workers} workers")

    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"{adapter.name}-shard")
    try:
        futures = [
            executor.submit(
                ShardWorker(i, shard, adapter, out_queue, stats, excluded, progress).run
            )
            for i, shard in enumerate(shards)
        ]
        closer = threading.Thread(
            target=_close_when_done, args=(futures, out_queue),
            name=f"{adapter.name}-queue-closer", daemon=True,
        )
        closer.start()

        aggregator.drain()
        closer.join()
    finally:
        executor.shutdown(wait=True)

    inventory = aggregator.finalize()
    logger.info(f"Discovered {len(inventory)} {adapter.name} resources")

    return DiscoveryResult(
        inventory=inventory,
        stats=stats,
        num_workers=workers,
        num_types=len(catalog),
        num_parents=len(parents),
    )
