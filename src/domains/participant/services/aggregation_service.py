"""
Aggregation service - concurrent fan-out to a participant's providers
"""

from typing import Any, Dict, List, Optional, Set
import asyncio
import logging
import time

from core.config import AggregationConfig
from core.metrics import aggregation_duration, branch_completions
from providers.base_branch import BaseBranch, BranchValue, ErrorRecord
from providers.branches import GroupBranch, OrganizationBranch, PlainBranch
from providers.exceptions import BranchTimeout, DiscoveryDataError
from providers.fetcher import PaginatingFetcher
from providers.registry import ParticipantBranchSet, ProviderRegistry


logger = logging.getLogger(__name__)

CONFIGURED_DEADLINE = object()


def _branch_id(branch: BaseBranch) -> str:
    return f"{branch.kind}:{branch.name}"


class AggregationBarrier:
    """
    Completion barrier for one aggregation request

    Starts PENDING with one slot per branch; each report merges the branch's
    partial result and decrements the count. The barrier completes when the
    count reaches zero. Reports are processed on the event loop thread, so
    the decrement-and-check needs no lock. Duplicate or late reports are
    ignored.
    """

    def __init__(self, branch_count: int):
        self.pending = branch_count
        self.result: Dict[str, BranchValue] = {}
        self._reported: Set[str] = set()
        self._complete = asyncio.Event()
        if branch_count == 0:
            self._complete.set()

    @property
    def complete(self) -> bool:
        return self._complete.is_set()

    def has_reported(self, branch_id: str) -> bool:
        return branch_id in self._reported

    def report(self, branch_id: str, partial: Dict[str, BranchValue]) -> bool:
        """Merge a branch's partial result; returns False if the report was ignored"""
        if self.complete or branch_id in self._reported:
            logger.warning(f"Ignoring duplicate or late report from branch {branch_id}")
            return False

        self._reported.add(branch_id)
        for key, value in partial.items():
            self._merge(key, value)

        self.pending -= 1
        if self.pending == 0:
            self._complete.set()
        return True

    async def wait(self) -> Dict[str, BranchValue]:
        await self._complete.wait()
        return self.result

    def _merge(self, key: str, value: BranchValue) -> None:
        existing = self.result.get(key)
        if existing is None or isinstance(existing, ErrorRecord):
            self.result[key] = value
            return
        if isinstance(value, ErrorRecord):
            logger.warning(f"Keeping bundle for '{key}' over a later error from {value.provider_name}")
            return

        # Organization names are assumed unique; a collision merges the bundles
        logger.warning(f"Result key collision on '{key}'; merging bundles")
        entries = existing.setdefault('entry', [])
        has_patient = any((e.get('resource') or {}).get('resourceType') == 'Patient' for e in entries)
        for entry in value.get('entry') or []:
            if has_patient and (entry.get('resource') or {}).get('resourceType') == 'Patient':
                continue
            entries.append(entry)
        existing['total'] = len(entries)


class AggregationService:
    """Runs every branch for a participant and merges the results"""

    def __init__(self, registry: ProviderRegistry, fetcher: PaginatingFetcher,
                 config: Optional[AggregationConfig] = None):
        self.registry = registry
        self.fetcher = fetcher
        self.config = config or AggregationConfig()

    def build_branches(self, branch_set: ParticipantBranchSet) -> List[BaseBranch]:
        """One branch per group, per organization provider and per plain provider"""
        branches: List[BaseBranch] = []
        for group_name, members in branch_set.groups.items():
            branches.append(GroupBranch(group_name, members, self.fetcher))
        for assignment in branch_set.org_providers:
            branches.append(OrganizationBranch(assignment, self.fetcher))
        for assignment in branch_set.plain_providers:
            branches.append(PlainBranch(assignment, self.fetcher))
        return branches

    async def aggregate(self, participant_id: str, deadline: Any = CONFIGURED_DEADLINE) -> Dict[str, Any]:
        """
        Aggregate all provider data for a participant

        Args:
            participant_id: Participant registry id
            deadline: Seconds to wait for all branches; None waits indefinitely.
                Defaults to the configured request deadline.

        Returns:
            Mapping of provider/organization name to bundle or error record dict
        """
        if deadline is CONFIGURED_DEADLINE:
            deadline = self.config.request_deadline

        start_time = time.perf_counter()
        branch_set = self.registry.plan(participant_id)
        branches = self.build_branches(branch_set)

        barrier = AggregationBarrier(len(branches))
        for name, error in branch_set.failures.items():
            barrier.result[name] = ErrorRecord(error=error, provider_name=name)

        if branches:
            logger.info(f"Aggregating participant {participant_id} over {len(branches)} branches")
            tasks = {
                asyncio.create_task(self._run_branch(branch, barrier)): branch
                for branch in branches
            }
            try:
                await asyncio.wait_for(barrier.wait(), timeout=deadline)
            except asyncio.TimeoutError:
                await self._expire(tasks, barrier, deadline)

        aggregation_duration.observe(time.perf_counter() - start_time)
        return {
            key: value.to_dict() if isinstance(value, ErrorRecord) else value
            for key, value in barrier.result.items()
        }

    async def _run_branch(self, branch: BaseBranch, barrier: AggregationBarrier) -> None:
        try:
            partial = await branch.run()
            status = 'error' if any(isinstance(v, ErrorRecord) for v in partial.values()) else 'success'
        except Exception as e:
            logger.exception(f"Unexpected failure in {branch!r}")
            partial = branch.fail(DiscoveryDataError(f"Unexpected failure in {branch.kind} branch '{branch.name}': {e}"))
            status = 'error'

        branch_completions.labels(kind=branch.kind, status=status).inc()
        barrier.report(_branch_id(branch), partial)

    async def _expire(self, tasks: Dict[asyncio.Task, BaseBranch],
                      barrier: AggregationBarrier, deadline: float) -> None:
        """Cancel branches still running at the deadline and record them as timed out"""
        pending = [task for task in tasks if not task.done()]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        for branch in tasks.values():
            branch_id = _branch_id(branch)
            if barrier.has_reported(branch_id):
                continue
            logger.error(f"{branch!r} did not report within {deadline}s")
            branch_completions.labels(kind=branch.kind, status='timeout').inc()
            barrier.report(branch_id, branch.fail(
                BranchTimeout(f"{branch.kind} branch '{branch.name}' did not complete within {deadline}s")
            ))
