"""
Base Aggregation Branch

Defines the interface every aggregation branch implements. A branch fetches
one upstream endpoint and turns it into one or more named entries of the
participant's aggregation result.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Any, Union
from dataclasses import dataclass
import logging

from .exceptions import DiscoveryDataError
from .fetcher import PaginatingFetcher

logger = logging.getLogger(__name__)


@dataclass
class ErrorRecord:
    """Stands in for a bundle when a branch fails"""
    error: DiscoveryDataError
    provider_name: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire form stored in the aggregation result"""
        return {
            'error': self.error.to_dict(),
            'providerName': self.provider_name
        }


BranchValue = Union[Dict[str, Any], ErrorRecord]


class BaseBranch(ABC):
    """
    Abstract base class for aggregation branches

    Branches never raise for upstream or data problems: failures are
    returned as ErrorRecords under the branch's keys so sibling branches
    are unaffected.
    """

    kind = 'base'

    def __init__(self, name: str, fetcher: PaginatingFetcher):
        self.name = name
        self.fetcher = fetcher

    @property
    @abstractmethod
    def keys(self) -> List[str]:
        """
        Result keys this branch reports under when it fails

        Used to fill in error entries for a branch that never reported.
        """

    @abstractmethod
    async def run(self) -> Dict[str, BranchValue]:
        """
        Fetch and transform this branch's data

        Returns:
            Mapping of logical source name to bundle or ErrorRecord
        """

    def fail(self, error: DiscoveryDataError) -> Dict[str, BranchValue]:
        """Error entries for every key of this branch"""
        return {key: ErrorRecord(error=error, provider_name=key) for key in self.keys}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.name!r})"
