"""
Annotation domain models

A participant's annotations are stored as one JSON blob:
    {providerName: {resourceId: {created, history: [{updated, text}]}}}
"""

from typing import Dict, List
from datetime import datetime, timezone
from pydantic import BaseModel, Field


def utc_now() -> str:
    """ISO-8601 UTC timestamp used for created/updated"""
    return datetime.now(timezone.utc).isoformat()


class AnnotationHistoryEntry(BaseModel):
    """One appended note"""
    updated: str
    text: str


class AnnotationRecord(BaseModel):
    """Append-only note history for one (provider, resource) pair"""
    created: str = Field(default_factory=utc_now)
    history: List[AnnotationHistoryEntry] = Field(default_factory=list)

    def append(self, text: str, updated: str) -> None:
        self.history.append(AnnotationHistoryEntry(updated=updated, text=text))


class UpsertAnnotationRequest(BaseModel):
    """Parameters of an annotation write"""
    participant_id: str = Field(..., min_length=1)
    provider_name: str = Field(..., min_length=1)
    resource_id: str = Field(..., min_length=1)
    text: str


# providerName -> resourceId -> raw record dict
AnnotationBlob = Dict[str, Dict[str, Dict]]
