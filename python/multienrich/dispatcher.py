"""
Enrichment Dispatcher

Fans the ranked list and the two directional subsets out to every configured
database on a bounded worker pool. Each (mode, database, universe, direction)
task is independent; a task that raises, returns malformed rows or runs past
the timeout becomes a FailureRecord and never affects its siblings.
"""

import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple, Union

from .databases import DatabaseDescriptor, RankParameters, SubsetParameters
from .errors import BackendError
from .ranking import DirectionalSubset, RankedGeneList
from .results import (
    AnalysisMode,
    EnrichmentResult,
    FailureRecord,
    RankedResult,
    RankedTerm,
    ResultBundle,
    ResultKey,
    SubsetResult,
    SubsetTerm,
    UniverseChoice,
)

logger = logging.getLogger("MultiEnrich.Dispatcher")


@dataclass
class DispatchTask:
    """One back-end invocation"""
    key: ResultKey
    descriptor: DatabaseDescriptor
    ranked: Optional[RankedGeneList] = None
    subset: Optional[DirectionalSubset] = None
    params: Union[RankParameters, SubsetParameters, None] = None
    started_at: Optional[float] = field(default=None, repr=False)

    @property
    def is_rank_based(self) -> bool:
        return self.key.mode is AnalysisMode.RANK

    def execute(self) -> EnrichmentResult:
        """Call the capability and wrap its rows (runs in a worker thread)"""
        self.started_at = time.monotonic()
        if self.is_rank_based:
            rows = self.descriptor.rank_capability(self.ranked, self.params)
            result = RankedResult(
                key=self.key,
                terms=_checked_rows(rows, RankedTerm, self.key),
                ontology_branch=self.descriptor.ontology_branch,
                ranking=self.ranked,
            )
        else:
            rows = self.descriptor.subset_capability(self.subset, self.params)
            result = SubsetResult(
                key=self.key,
                terms=_checked_rows(rows, SubsetTerm, self.key),
                ontology_branch=self.descriptor.ontology_branch,
                subset=self.subset,
            )
            stray = result.stray_hits()
            if stray:
                raise BackendError(
                    f"{self.key.name}: {len(stray)} hit genes are not in the {self.subset.direction.value} "
                    f"subset (e.g. {', '.join(stray[:3])})"
                )
        return result


def _checked_rows(rows, row_type, key: ResultKey) -> List:
    if rows is None or isinstance(rows, (str, bytes, dict)):
        raise BackendError(f"{key.name}: back-end returned {type(rows).__name__}, expected a list of rows")
    rows = list(rows)
    bad = [type(r).__name__ for r in rows if not isinstance(r, row_type)]
    if bad:
        raise BackendError(
            f"{key.name}: {len(bad)} malformed rows ({bad[0]}), expected {row_type.__name__}"
        )
    return rows


class EnrichmentDispatcher:
    """
    Runs every supported analysis of every database.

    Args:
        descriptors: Database capability table
        max_workers: Upper bound of the worker pool; never more threads than
            there are databases
        task_timeout: Seconds a running task may take before it is recorded
            as failed (None waits forever)
    """

    def __init__(
        self,
        descriptors: Sequence[DatabaseDescriptor],
        max_workers: int = 4,
        task_timeout: Optional[float] = None,
    ):
        names = [d.display_name for d in descriptors]
        duplicated = sorted({n for n in names if names.count(n) > 1})
        if duplicated:
            raise ValueError(f"Duplicate database descriptors: {', '.join(duplicated)}")
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")

        self.descriptors = list(descriptors)
        self.max_workers = max_workers
        self.task_timeout = task_timeout
        self.warm_errors: Dict[str, BaseException] = {}

    def warm(self) -> Dict[str, BaseException]:
        """
        Load every database's gene sets, one after another, before any worker
        starts. A database that fails to load is recorded and its tasks fail.
        """
        for descriptor in self.descriptors:
            if descriptor.warm is None or descriptor.display_name in self.warm_errors:
                continue
            try:
                descriptor.warm()
            except Exception as e:
                logger.error(f"Loading {descriptor.display_name} failed: {e}")
                self.warm_errors[descriptor.display_name] = e
        return self.warm_errors

    def reference_universe(self, descriptor: DatabaseDescriptor) -> Optional[FrozenSet[str]]:
        """Reference key set of a database, None when unknown or not loaded"""
        if descriptor.reference_universe is None or descriptor.display_name in self.warm_errors:
            return None
        return descriptor.reference_universe()

    def plan(
        self,
        ranked: RankedGeneList,
        subsets: Sequence[DirectionalSubset],
        rank_params: RankParameters,
        subset_params: SubsetParameters,
        internal_universe: Optional[FrozenSet[str]] = None,
        use_internal_universe: bool = True,
    ) -> List[DispatchTask]:
        """
        Build the task list.

        Subset-based tasks use the internal universe when use_internal_universe
        is set, and databases that compare universes also get the reference
        one. Without it every database runs against its reference universe.
        """
        if use_internal_universe and internal_universe is None:
            raise ValueError("use_internal_universe requires an internal universe")

        tasks = []
        for descriptor in self.descriptors:
            if descriptor.supports_rank:
                tasks.append(DispatchTask(
                    key=ResultKey(AnalysisMode.RANK, descriptor.label, descriptor.collection),
                    descriptor=descriptor,
                    ranked=ranked,
                    params=rank_params,
                ))

            if not descriptor.supports_subset:
                continue
            for universe in self._universe_choices(descriptor, use_internal_universe):
                keys = internal_universe if universe is UniverseChoice.INTERNAL else None
                params = SubsetParameters(
                    min_size=subset_params.min_size,
                    max_size=subset_params.max_size,
                    pval_cutoff=subset_params.pval_cutoff,
                    qval_cutoff=subset_params.qval_cutoff,
                    p_adjust_method=subset_params.p_adjust_method,
                    universe=keys,
                )
                for subset in subsets:
                    tasks.append(DispatchTask(
                        key=ResultKey(
                            AnalysisMode.SUBSET, descriptor.label, descriptor.collection,
                            universe, subset.direction,
                        ),
                        descriptor=descriptor,
                        subset=subset,
                        params=params,
                    ))

        logger.info(
            f"Planned {len(tasks)} tasks over {len(self.descriptors)} databases "
            f"({sum(1 for t in tasks if t.is_rank_based)} rank-based)"
        )
        return tasks

    @staticmethod
    def _universe_choices(descriptor, use_internal_universe) -> List[UniverseChoice]:
        if not use_internal_universe:
            return [UniverseChoice.REFERENCE]
        if descriptor.compare_universes:
            return [UniverseChoice.INTERNAL, UniverseChoice.REFERENCE]
        return [UniverseChoice.INTERNAL]

    def run(self, tasks: Sequence[DispatchTask]) -> ResultBundle:
        """
        Execute tasks on the worker pool and collect a ResultBundle.

        Completion order is irrelevant; results are stored under their
        composite names.
        """
        bundle = ResultBundle()
        runnable = []
        for task in tasks:
            error = self.warm_errors.get(task.descriptor.display_name)
            if error is not None:
                self._record_failure(bundle, task, error, elapsed=None)
            else:
                runnable.append(task)

        if not runnable:
            return bundle

        workers = max(1, min(self.max_workers, len(self.descriptors) or 1, len(runnable)))
        logger.info(f"Dispatching {len(runnable)} tasks on {workers} workers")

        executors: List[ThreadPoolExecutor] = []

        def submit(batch: Sequence[DispatchTask]) -> Dict[Future, DispatchTask]:
            executor = ThreadPoolExecutor(
                max_workers=min(workers, len(batch)), thread_name_prefix="multienrich",
            )
            executors.append(executor)
            return {executor.submit(t.execute): t for t in batch}

        try:
            pending = submit(runnable)
            poll = None if self.task_timeout is None else min(1.0, self.task_timeout)
            while pending:
                done, _ = wait(list(pending), timeout=poll, return_when=FIRST_COMPLETED)
                for future in done:
                    task = pending.pop(future)
                    self._collect(bundle, task, future)
                expired = self._expired(pending)
                for future, task in expired:
                    pending.pop(future)
                    self._record_failure(
                        bundle, task,
                        TimeoutError(f"no result after {self.task_timeout:g}s"),
                        elapsed=self._elapsed(task),
                    )
                if expired:
                    # the stalled workers stay occupied; queued tasks move to a fresh pool
                    queued = {f: t for f, t in pending.items() if f.cancel()}
                    for future in queued:
                        del pending[future]
                    if queued:
                        logger.warning(
                            f"{len(expired)} tasks timed out, rescheduling {len(queued)} queued tasks"
                        )
                        pending.update(submit(list(queued.values())))
        finally:
            # timed-out tasks keep their thread until they return; do not block on them
            for executor in executors:
                executor.shutdown(wait=False, cancel_futures=True)

        logger.info(
            f"Dispatch complete: {len(bundle)} results "
            f"({sum(1 for r in bundle.results() if r.is_empty)} empty), {len(bundle.failures)} failures"
        )
        return bundle

    def dispatch(
        self,
        ranked: RankedGeneList,
        subsets: Sequence[DirectionalSubset],
        rank_params: RankParameters,
        subset_params: SubsetParameters,
        internal_universe: Optional[FrozenSet[str]] = None,
        use_internal_universe: bool = True,
    ) -> ResultBundle:
        """plan() followed by run()"""
        return self.run(self.plan(
            ranked, subsets, rank_params, subset_params,
            internal_universe=internal_universe,
            use_internal_universe=use_internal_universe,
        ))

    def _expired(self, pending: Dict[Future, DispatchTask]) -> List[Tuple[Future, DispatchTask]]:
        if self.task_timeout is None:
            return []
        now = time.monotonic()
        return [
            (future, task) for future, task in pending.items()
            if task.started_at is not None and now - task.started_at > self.task_timeout
        ]

    @staticmethod
    def _elapsed(task: DispatchTask) -> Optional[float]:
        return None if task.started_at is None else time.monotonic() - task.started_at

    def _collect(self, bundle: ResultBundle, task: DispatchTask, future: Future):
        error = future.exception()
        if error is not None:
            self._record_failure(bundle, task, error, elapsed=self._elapsed(task))
            return
        result = future.result()
        if result.is_empty:
            logger.warning(f"{task.key.name}: no terms pass the cutoffs")
        bundle.add(result)

    @staticmethod
    def _record_failure(bundle: ResultBundle, task: DispatchTask, error: BaseException, elapsed):
        logger.error(f"{task.key.name} failed: {type(error).__name__}: {error}")
        bundle.add_failure(FailureRecord(
            key=task.key,
            error_type=type(error).__name__,
            message=str(error),
            elapsed=elapsed,
        ))
