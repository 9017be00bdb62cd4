"""
Helpers for FHIR-style bundle dictionaries

Bundles stay plain dicts so the wire shape returned by upstream providers
is passed through to callers untouched.
"""

from typing import Any, Dict, Iterable, List, Optional, Tuple


def new_bundle(entries: Optional[Iterable[Dict[str, Any]]] = None) -> Dict[str, Any]:
    """Create a bundle holding `entries` with its total set"""
    entry = list(entries or [])
    return {
        'resourceType': 'Bundle',
        'total': len(entry),
        'entry': entry
    }


def add_entry(bundle: Dict[str, Any], entry: Dict[str, Any]) -> None:
    """Append an entry and keep the running total"""
    bundle['entry'].append(entry)
    bundle['total'] = len(bundle['entry'])


def resource_of(entry: Dict[str, Any]) -> Dict[str, Any]:
    return entry.get('resource') or {}


def resource_type(entry: Dict[str, Any]) -> Optional[str]:
    return resource_of(entry).get('resourceType')


def resource_id(entry: Dict[str, Any]) -> Optional[str]:
    return resource_of(entry).get('id')


def entry_identity(entry: Dict[str, Any]) -> Optional[Tuple[str, str]]:
    """(resourceType, id) identity of an entry, None if it has no id"""
    rid = resource_id(entry)
    if rid is None:
        return None
    return (resource_type(entry), rid)


def find_patient(entries: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Return the first Patient entry, if any"""
    for entry in entries:
        if resource_type(entry) == 'Patient':
            return entry
    return None


def next_link(bundle: Dict[str, Any]) -> Optional[str]:
    """URL of the bundle's 'next' relation link, if present"""
    for link in bundle.get('link') or []:
        if link.get('relation') == 'next' and link.get('url'):
            return link['url']
    return None


def is_error_record(value: Dict[str, Any]) -> bool:
    """True for ErrorRecord dicts stored in an aggregation result"""
    return isinstance(value, dict) and 'error' in value and value.get('resourceType') != 'Bundle'


def reference_key(reference: Optional[str]) -> Optional[str]:
    """
    Reduce a reference string to the id/value it points at.

    Handles 'Organization/123', 'urn:uuid:123' and conditional
    'Organization?identifier=system|123' forms.
    """
    if not reference:
        return None
    if '|' in reference:
        return reference.rsplit('|', 1)[1] or None
    if reference.startswith('urn:uuid:'):
        return reference[len('urn:uuid:'):] or None
    if '/' in reference:
        return reference.rstrip('/').rsplit('/', 1)[1] or None
    return reference
