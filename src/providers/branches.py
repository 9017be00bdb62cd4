"""
Aggregation branch implementations

- GroupBranch: fetch once for a provider group, partition per provider
- OrganizationBranch: fetch once, split per producing organization
- PlainBranch: fetch once, pass through under the provider name
"""

import logging
from typing import Dict, List, Optional

from .base_branch import BaseBranch, BranchValue, ErrorRecord
from .exceptions import FetchError, GroupPatientMismatch
from .fetcher import PaginatingFetcher
from .organization import OrganizationReorganizer
from .partition import PartitionAssigner
from .registry import ProviderAssignment

logger = logging.getLogger(__name__)


class GroupBranch(BaseBranch):
    """Providers sharing one upstream feed, each seeing a deterministic slice of it"""

    kind = 'group'

    def __init__(self, group_name: str, members: List[ProviderAssignment],
                 fetcher: PaginatingFetcher, assigner: Optional[PartitionAssigner] = None):
        super().__init__(group_name, fetcher)
        if not members:
            raise ValueError(f"Group '{group_name}' has no providers")
        self.members = members
        self.assigner = assigner or PartitionAssigner()

    @property
    def keys(self) -> List[str]:
        return [member.name for member in self.members]

    def check_patient_ids(self) -> str:
        """
        The group's single shared patient id

        Raises:
            GroupPatientMismatch: members resolve to different patient ids
        """
        patient_ids = {member.patient_id for member in self.members}
        if len(patient_ids) != 1:
            raise GroupPatientMismatch(self.name, patient_ids)
        return patient_ids.pop()

    async def run(self) -> Dict[str, BranchValue]:
        try:
            patient_id = self.check_patient_ids()
        except GroupPatientMismatch as e:
            logger.error(str(e))
            return {self.name: ErrorRecord(error=e, provider_name=self.name)}

        # Members share the upstream endpoint; the first one addresses it
        upstream = self.members[0].spec
        try:
            bundle = await self.fetcher.fetch_all(upstream.base, upstream.path_for(patient_id))
        except FetchError as e:
            logger.error(f"Group '{self.name}' fetch failed: {e}")
            return self.fail(e)

        return self.assigner.partition(bundle, [member.spec for member in self.members])


class OrganizationBranch(BaseBranch):
    """A provider whose records are regrouped by producing organization"""

    kind = 'organization'

    def __init__(self, assignment: ProviderAssignment, fetcher: PaginatingFetcher,
                 reorganizer: Optional[OrganizationReorganizer] = None):
        super().__init__(assignment.name, fetcher)
        self.assignment = assignment
        self.reorganizer = reorganizer or OrganizationReorganizer()

    @property
    def keys(self) -> List[str]:
        return [self.name]

    async def run(self) -> Dict[str, BranchValue]:
        spec = self.assignment.spec
        try:
            bundle = await self.fetcher.fetch_all(spec.base, spec.path_for(self.assignment.patient_id))
        except FetchError as e:
            logger.error(f"Provider '{self.name}' fetch failed: {e}")
            return self.fail(e)

        results, dropped = self.reorganizer.reorganize_with_diagnostics(bundle)
        if dropped:
            logger.warning(f"Provider '{self.name}': {len(dropped)} entries without an organization were dropped")
        return results


class PlainBranch(BaseBranch):
    """A provider returned as-is"""

    kind = 'plain'

    def __init__(self, assignment: ProviderAssignment, fetcher: PaginatingFetcher):
        super().__init__(assignment.name, fetcher)
        self.assignment = assignment

    @property
    def keys(self) -> List[str]:
        return [self.name]

    async def run(self) -> Dict[str, BranchValue]:
        spec = self.assignment.spec
        try:
            bundle = await self.fetcher.fetch_all(spec.base, spec.path_for(self.assignment.patient_id))
        except FetchError as e:
            logger.error(f"Provider '{self.name}' fetch failed: {e}")
            return self.fail(e)
        return {self.name: bundle}
