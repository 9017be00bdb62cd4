"""
Upstream Providers Package

Everything that talks to, or reshapes data from, upstream data providers.

- ProviderRegistry: provider/participant registries and branch planning
- AiohttpTransport: GET with timeouts and bounded retries
- PaginatingFetcher: follows 'next' links into one deduplicated bundle
- PartitionAssigner: deterministic per-provider slices of a group's bundle
- OrganizationReorganizer: per-organization bundles from reference chains
- GroupBranch, OrganizationBranch, PlainBranch: the aggregation branch kinds

All branches implement the BaseBranch interface and report failures as
ErrorRecords instead of raising.
"""

from .base_branch import BaseBranch, BranchValue, ErrorRecord
from .branches import GroupBranch, OrganizationBranch, PlainBranch
from .exceptions import (
    BranchTimeout,
    DiscoveryDataError,
    FetchError,
    GroupPatientMismatch,
    MalformedProviderSpec,
    StorageError
)
from .fetcher import PaginatingFetcher, Transport
from .organization import OrganizationReorganizer
from .partition import PartitionAssigner, record_random
from .registry import ParticipantBranchSet, ProviderAssignment, ProviderRegistry, ProviderSpec
from .transport import AiohttpTransport

__all__ = [
    # Registry
    'ProviderRegistry',
    'ProviderSpec',
    'ProviderAssignment',
    'ParticipantBranchSet',

    # Fetching
    'Transport',
    'AiohttpTransport',
    'PaginatingFetcher',

    # Transforms
    'PartitionAssigner',
    'record_random',
    'OrganizationReorganizer',

    # Branches
    'BaseBranch',
    'BranchValue',
    'ErrorRecord',
    'GroupBranch',
    'OrganizationBranch',
    'PlainBranch',

    # Errors
    'DiscoveryDataError',
    'FetchError',
    'GroupPatientMismatch',
    'MalformedProviderSpec',
    'BranchTimeout',
    'StorageError'
]
