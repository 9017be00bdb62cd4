"""
Exception types raised by the aggregation engine and annotation store
"""

from typing import Any, Dict, Optional


class DiscoveryDataError(Exception):
    """Base class for all service errors"""

    def to_dict(self) -> Dict[str, Any]:
        """Structured form stored inside an ErrorRecord"""
        return {
            'type': self.__class__.__name__,
            'message': str(self)
        }


class FetchError(DiscoveryDataError):
    """Upstream GET failed (transport error, timeout or bad status) after retries"""

    def __init__(self, message: str, url: Optional[str] = None,
                 status: Optional[int] = None, attempts: int = 1):
        super().__init__(message)
        self.url = url
        self.status = status
        self.attempts = attempts

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update({
            'url': self.url,
            'status': self.status,
            'attempts': self.attempts
        })
        return result


class GroupPatientMismatch(DiscoveryDataError):
    """Providers of one group resolve to different patient ids"""

    def __init__(self, group_name: str, patient_ids):
        self.group_name = group_name
        self.patient_ids = sorted(set(patient_ids))
        super().__init__(
            f"Group '{group_name}' providers disagree on patient id: {', '.join(self.patient_ids)}"
        )

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['patientIds'] = self.patient_ids
        return result


class MalformedProviderSpec(DiscoveryDataError):
    """Provider registry entry is missing or invalid"""


class BranchTimeout(DiscoveryDataError):
    """Branch did not report before the aggregation deadline"""


class StorageError(DiscoveryDataError):
    """Annotation store read or write failed"""
