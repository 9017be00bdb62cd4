"""
Provider Registry

Static provider and participant registries (already loaded by the caller)
and the planning step that splits a participant's providers into the
branch kinds the aggregation engine runs.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .exceptions import MalformedProviderSpec

logger = logging.getLogger(__name__)


class ProviderSpec(BaseModel):
    """One upstream data provider"""
    model_config = ConfigDict(populate_by_name=True, extra='allow')

    name: str
    base: str = Field(..., min_length=1, description="Base URL of the provider endpoint")
    path: str = Field(..., description="Path template; {0} is the participant's patient id")
    ref_path: Optional[str] = Field(None, alias='refPath', description="Reference path template")
    group: Optional[str] = None
    use_org: bool = Field(False, alias='useOrg')
    rand_low: float = Field(0.0, alias='randLow', ge=0.0, le=1.0)
    rand_high: float = Field(1.0, alias='randHigh', ge=0.0, le=1.0)

    @model_validator(mode='after')
    def _check_range(self):
        if self.rand_low > self.rand_high:
            raise ValueError(f"randLow {self.rand_low} exceeds randHigh {self.rand_high}")
        return self

    def path_for(self, patient_id: str) -> str:
        """Resolve the path template for a patient; only the literal {0} is replaced"""
        return self.path.replace('{0}', patient_id)

    def reference_path_for(self, reference_path: str) -> Optional[str]:
        if self.ref_path is None:
            return None
        return self.ref_path.replace('{0}', reference_path)

    def in_range(self, value: float) -> bool:
        """Partition range membership: randLow <= value < randHigh"""
        return self.rand_low <= value < self.rand_high


class ParticipantProvider(BaseModel):
    """A provider registered for a participant"""
    model_config = ConfigDict(populate_by_name=True, extra='allow')

    provider_name: str = Field(..., alias='providerName')
    patient_id: str = Field(..., alias='patientId')


@dataclass
class ProviderAssignment:
    """A validated provider paired with the participant's patient id there"""
    spec: ProviderSpec
    patient_id: str

    @property
    def name(self) -> str:
        return self.spec.name


@dataclass
class ParticipantBranchSet:
    """A participant's providers split by branch kind"""
    participant_id: str
    groups: Dict[str, List[ProviderAssignment]] = field(default_factory=dict)
    org_providers: List[ProviderAssignment] = field(default_factory=list)
    plain_providers: List[ProviderAssignment] = field(default_factory=list)
    failures: Dict[str, MalformedProviderSpec] = field(default_factory=dict)

    @property
    def branch_count(self) -> int:
        return len(self.groups) + len(self.org_providers) + len(self.plain_providers)

    def is_empty(self) -> bool:
        return self.branch_count == 0 and not self.failures


class ProviderRegistry:
    """
    Read-only view over the provider and participant registries

    Both registries are the raw mappings loaded from configuration:
      providers:    {name: {base, path, refPath?, group?, useOrg?, randLow?, randHigh?}}
      participants: {id: {name, providers: [{providerName, patientId}], ...}}
    Provider entries are validated lazily so one bad entry only affects
    the participants that use it.
    """

    def __init__(self, providers: Dict[str, Dict[str, Any]],
                 participants: Dict[str, Dict[str, Any]]):
        self._providers = providers
        self._participants = participants
        self._participants_by_id: Optional[Dict[str, str]] = None

    def provider_names(self) -> List[str]:
        """Names of all configured providers"""
        return list(self._providers.keys())

    def participants(self) -> Dict[str, Dict[str, Any]]:
        """The participant registry as configured"""
        return self._participants

    def participants_by_id(self) -> Dict[str, str]:
        """Participant id -> participant name"""
        if self._participants_by_id is None:
            self._participants_by_id = {
                pid: participant.get('name')
                for pid, participant in self._participants.items()
            }
        return self._participants_by_id

    def providers_for_participant(self, participant_id: str) -> List[Dict[str, Any]]:
        """[{providerName, patientId}] for a participant (empty if unknown)"""
        participant = self._participants.get(participant_id)
        return list(participant.get('providers') or []) if participant else []

    def get_provider(self, provider_name: str) -> ProviderSpec:
        """
        Validated spec for one provider

        Raises:
            MalformedProviderSpec: unknown provider or invalid entry
        """
        raw = self._providers.get(provider_name)
        if raw is None:
            raise MalformedProviderSpec(f"Unknown provider '{provider_name}'")
        if not isinstance(raw, dict):
            raise MalformedProviderSpec(f"Provider '{provider_name}' entry is not an object")

        try:
            return ProviderSpec.model_validate({**raw, 'name': provider_name})
        except ValidationError as e:
            raise MalformedProviderSpec(f"Invalid provider '{provider_name}': {e}") from e

    def plan(self, participant_id: str) -> ParticipantBranchSet:
        """Split a participant's providers into groups, org providers and plain providers"""
        branch_set = ParticipantBranchSet(participant_id=participant_id)

        for index, raw in enumerate(self.providers_for_participant(participant_id)):
            try:
                link = ParticipantProvider.model_validate(raw)
            except ValidationError as e:
                key = raw.get('providerName') if isinstance(raw, dict) else None
                key = key or f"provider[{index}]"
                logger.warning(f"Malformed provider link {key} for participant {participant_id}: {e}")
                branch_set.failures[key] = MalformedProviderSpec(f"Invalid provider link '{key}': {e}")
                continue

            try:
                spec = self.get_provider(link.provider_name)
            except MalformedProviderSpec as e:
                logger.warning(f"Participant {participant_id}: {e}")
                branch_set.failures[link.provider_name] = e
                continue

            assignment = ProviderAssignment(spec=spec, patient_id=link.patient_id)
            if spec.group:
                branch_set.groups.setdefault(spec.group, []).append(assignment)
            elif spec.use_org:
                branch_set.org_providers.append(assignment)
            else:
                branch_set.plain_providers.append(assignment)

        logger.debug(
            f"Participant {participant_id}: {len(branch_set.groups)} groups, "
            f"{len(branch_set.org_providers)} org providers, "
            f"{len(branch_set.plain_providers)} plain providers, "
            f"{len(branch_set.failures)} malformed"
        )
        return branch_set
