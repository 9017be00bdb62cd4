"""
Organization Reorganizer

Regroups a flat provider bundle into one bundle per organization by
following Encounter/Claim/ExplanationOfBenefit references back to the
Organization that produced each record.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .bundle import add_entry, new_bundle, reference_key, resource_of, resource_type

logger = logging.getLogger(__name__)


class ResourceKind(Enum):
    """Resource types the reorganizer treats specially"""
    PATIENT = "Patient"
    ENCOUNTER = "Encounter"
    CLAIM = "Claim"
    ORGANIZATION = "Organization"
    EXPLANATION_OF_BENEFIT = "ExplanationOfBenefit"
    OTHER = "Other"

    @classmethod
    def of(cls, entry: Dict[str, Any]) -> "ResourceKind":
        try:
            return cls(resource_type(entry))
        except ValueError:
            return cls.OTHER


def _reference(resource: Dict[str, Any], *names: str) -> Optional[str]:
    """Key of the first populated reference field among `names`"""
    for name in names:
        value = resource.get(name)
        if isinstance(value, list):
            value = value[0] if value else None
        if isinstance(value, dict):
            key = reference_key(value.get('reference'))
            if key:
                return key
    return None


@dataclass
class OrganizationIndex:
    """Pass-1 lookup tables"""
    patient: Optional[Dict[str, Any]] = None
    encounter_orgs: Dict[str, Optional[str]] = field(default_factory=dict)
    claim_orgs: Dict[str, Optional[str]] = field(default_factory=dict)
    org_names: Dict[str, str] = field(default_factory=dict)

    def org_name(self, org_key: Optional[str]) -> Optional[str]:
        return self.org_names.get(org_key) if org_key else None


class OrganizationReorganizer:
    """Two-pass reference resolution from records to organization names"""

    def reorganize(self, bundle: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
        """Organization name -> bundle (Patient first); unresolved entries are dropped"""
        results, _ = self.reorganize_with_diagnostics(bundle)
        return results

    def reorganize_with_diagnostics(
        self, bundle: Dict[str, Any]
    ) -> Tuple[Dict[str, Dict[str, Any]], List[Dict[str, Any]]]:
        """Like reorganize() but also returns the entries that could not be attributed"""
        entries = bundle.get('entry') or []
        index = self.build_index(entries)

        results: Dict[str, Dict[str, Any]] = {}
        dropped: List[Dict[str, Any]] = []

        for entry in entries:
            kind = ResourceKind.of(entry)
            if kind in (ResourceKind.PATIENT, ResourceKind.ORGANIZATION):
                continue

            org_name = self._resolve(kind, resource_of(entry), index)
            if org_name is None:
                logger.info(
                    f"Dropping {resource_type(entry)}/{resource_of(entry).get('id')}: "
                    f"no resolvable organization"
                )
                dropped.append(entry)
                continue

            # Organization names are assumed unique per participant; collisions merge
            if org_name not in results:
                results[org_name] = new_bundle([dict(index.patient)] if index.patient else [])
            add_entry(results[org_name], dict(entry))

        return results, dropped

    def build_index(self, entries: List[Dict[str, Any]]) -> OrganizationIndex:
        index = OrganizationIndex()

        for entry in entries:
            kind = ResourceKind.of(entry)
            resource = resource_of(entry)
            rid = resource.get('id')

            if kind is ResourceKind.PATIENT:
                if index.patient is None:
                    index.patient = entry
            elif kind is ResourceKind.ENCOUNTER and rid:
                index.encounter_orgs[rid] = _reference(resource, 'serviceProvider')
            elif kind is ResourceKind.CLAIM and rid:
                index.claim_orgs[rid] = _reference(resource, 'organization', 'provider')
            elif kind is ResourceKind.ORGANIZATION:
                name = resource.get('name')
                if not name:
                    continue
                if rid:
                    index.org_names[rid] = name
                for identifier in resource.get('identifier') or []:
                    value = identifier.get('value')
                    if value:
                        index.org_names[value] = name

        return index

    def _resolve(self, kind: ResourceKind, resource: Dict[str, Any],
                 index: OrganizationIndex) -> Optional[str]:
        if kind is ResourceKind.ENCOUNTER:
            return index.org_name(_reference(resource, 'serviceProvider'))

        if kind is ResourceKind.CLAIM:
            return index.org_name(_reference(resource, 'organization', 'provider'))

        if kind is ResourceKind.EXPLANATION_OF_BENEFIT:
            org_key = _reference(resource, 'organization')
            if org_key is None:
                claim_key = _reference(resource, 'claim')
                org_key = index.claim_orgs.get(claim_key) if claim_key else None
            return index.org_name(org_key)

        encounter_key = _reference(resource, 'encounter', 'context')
        if encounter_key is None:
            return None
        return index.org_name(index.encounter_orgs.get(encounter_key))
