"""
Paginating Fetcher

Follows a provider's 'next' links and consolidates every page into a single
deduplicated bundle.
"""

import logging
from typing import Any, Dict, Optional, Protocol, Set, Tuple

from .bundle import entry_identity, next_link
from .exceptions import FetchError
from .transport import resolve_url

logger = logging.getLogger(__name__)


class Transport(Protocol):
    async def get(self, base: str, path: str) -> Dict[str, Any]:
        ...


class PaginatingFetcher:
    """Fetches every page of one upstream bundle for one provider endpoint"""

    def __init__(self, transport: Transport, max_pages: int = 500):
        self.transport = transport
        self.max_pages = max_pages

    async def fetch_all(self, base: str, path: str) -> Dict[str, Any]:
        """
        Fetch base+path and every page linked by 'next'

        Entries are deduplicated on (resourceType, id) within this call. The
        merged bundle keeps the first page's links except 'next' and has its
        total set to the number of entries kept. 'next' URLs are followed
        as given; relative ones are resolved against the base.

        Raises:
            FetchError: if any page fails, or pages remain after `max_pages`;
                no partial bundle is returned
        """
        bundle: Optional[Dict[str, Any]] = None
        seen: Set[Tuple[str, str]] = set()
        visited: Set[str] = set()
        next_path: Optional[str] = path
        pages = 0

        while next_path is not None:
            url = resolve_url(base, next_path)
            if pages >= self.max_pages:
                logger.error(f"{base}{path} still has pages after {pages}; giving up at {url}")
                raise FetchError(f"Pagination of {resolve_url(base, path)} exceeded {self.max_pages} pages",
                                 url=url)
            visited.add(url)

            page = await self.transport.get(base, next_path)
            if not isinstance(page, dict):
                raise FetchError(f"Page {pages + 1} from {url} is not a bundle object", url=url)
            pages += 1

            if bundle is None:
                bundle = self._start_bundle(page)

            for entry in page.get('entry') or []:
                identity = entry_identity(entry)
                if identity is not None:
                    if identity in seen:
                        continue
                    seen.add(identity)
                bundle['entry'].append(entry)

            next_path = next_link(page)
            if next_path is not None and resolve_url(base, next_path) in visited:
                logger.warning(f"Pagination loop at {next_path}; stopping")
                next_path = None

        bundle['total'] = len(bundle['entry'])
        logger.debug(f"Fetched {bundle['total']} entries in {pages} pages from {base}{path}")
        return bundle

    @staticmethod
    def _start_bundle(page: Dict[str, Any]) -> Dict[str, Any]:
        bundle = {key: value for key, value in page.items() if key not in ('entry', 'link', 'total')}
        bundle['resourceType'] = 'Bundle'
        bundle['total'] = 0
        bundle['entry'] = []
        links = [link for link in page.get('link') or [] if link.get('relation') != 'next']
        if links or 'link' in page:
            bundle['link'] = links
        return bundle
