"""
Logo catalogs consulted by the LogoResolver.

    LocalLogoCatalog   name -> file, built once from a local directory listing
    RemoteLogoCatalog  per-country directory listing, fetched lazily and cached
                       for the process lifetime (failures cached as empty)
    IdLogoMap          precomputed dataset-id -> logo URL mapping, refreshed
                       with the geo dataset
"""

import asyncio
import logging
import re
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional

import aiohttp

from ..search.normalize import DEFAULT_BRAND_WORD, normalize_name

logger = logging.getLogger(__name__)

LOCAL_LOGO_PATTERN = re.compile(r'\.(png|svg|gif|jpg|jpeg)$', re.IGNORECASE)
LISTING_HREF_PATTERN = re.compile(r'href="([^"]+\.(?:png|svg|gif))"', re.IGNORECASE)

FetchText = Callable[[str], Awaitable[str]]


async def fetch_text(url: str, timeout_s: float = 10.0) -> str:
    """
    GET a URL and return the body. Undecodable bytes become U+FFFD.

    Raises:
        aiohttp.ClientError: network failure or non-200 status
        asyncio.TimeoutError: request exceeded timeout_s
    """
    async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout_s)) as session:
        async with session.get(url) as response:
            response.raise_for_status()
            body = await response.read()
            charset = response.charset or 'utf-8'
    try:
        return body.decode(charset, errors='replace')
    except LookupError:
        return body.decode('utf-8', errors='replace')


class LocalLogoCatalog:
    """Logo files shipped with the web frontend, keyed by normalized name."""

    def __init__(self, entries: Optional[Dict[str, str]] = None, url_prefix: str = '/logos/'):
        self.entries: Dict[str, str] = dict(entries or {})
        self.url_prefix = url_prefix

    @classmethod
    def from_directory(
        cls,
        directory: Optional[Path],
        brand_word: str = DEFAULT_BRAND_WORD,
        url_prefix: str = '/logos/',
    ) -> "LocalLogoCatalog":
        """Index a directory once. A missing directory yields an empty catalog."""
        catalog = cls(url_prefix=url_prefix)
        if directory is None:
            return catalog

        directory = Path(directory)
        if not directory.is_dir():
            logger.info(f"Logos directory not found: {directory}")
            return catalog

        try:
            names = sorted(p.name for p in directory.iterdir() if p.is_file())
        except OSError as e:
            logger.error(f"Failed to list local logos in {directory}: {e}")
            return catalog

        for name in names:
            if not LOCAL_LOGO_PATTERN.search(name):
                continue
            key = normalize_name(LOCAL_LOGO_PATTERN.sub('', name), brand_word)
            if key and key not in catalog.entries:
                catalog.entries[key] = name

        logger.info(f"Local logos loaded: {len(catalog.entries)}")
        return catalog

    def __len__(self) -> int:
        return len(self.entries)

    def url_for(self, file_name: str) -> str:
        return f"{self.url_prefix}{file_name}"

    def find_exact(self, key: str) -> Optional[str]:
        if not key:
            return None
        return self.entries.get(key)

    def find_containing(self, key: str) -> Optional[str]:
        """First entry whose key contains ``key`` or is contained in it."""
        if not key:
            return None
        for entry_key, file_name in self.entries.items():
            if key in entry_key or entry_key in key:
                return file_name
        return None


class RemoteLogoCatalog:
    """
    Remote logo directory organised by country code.

    Each country's listing is fetched at most once per process. A failed or
    empty fetch is remembered as an empty listing and never retried.
    """

    def __init__(self, base_url: str, fetch: Optional[FetchText] = None, timeout_s: float = 10.0):
        self.base_url = base_url if base_url.endswith('/') else base_url + '/'
        self.timeout_s = timeout_s
        self._fetch = fetch
        self._listings: Dict[str, List[str]] = {}

    def url_for(self, country_code: str, file_name: str) -> str:
        return f"{self.base_url}{country_code}/{file_name}"

    def cached_countries(self) -> List[str]:
        return sorted(self._listings)

    async def files_for(self, country_code: str) -> List[str]:
        key = (country_code or '').strip().upper()
        if not key:
            return []
        if key in self._listings:
            return self._listings[key]

        url = f"{self.base_url}{key}/"
        try:
            if self._fetch is not None:
                html = await self._fetch(url)
            else:
                html = await fetch_text(url, self.timeout_s)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as e:
            logger.warning(f"Logo listing for {key} unavailable: {e}")
            self._listings[key] = []
            return []

        files = [m.group(1) for m in LISTING_HREF_PATTERN.finditer(html or '')]
        self._listings[key] = files
        logger.debug(f"Logo listing for {key}: {len(files)} files")
        return files


class IdLogoMap:
    """Dataset station id -> logo URL, refreshed alongside the geo dataset."""

    def __init__(self, url: Optional[str] = None, timeout_s: float = 30.0):
        self.url = url
        self.timeout_s = timeout_s
        self.mapping: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self.mapping)

    def lookup(self, catalog_id: Optional[str]) -> Optional[str]:
        if not catalog_id:
            return None
        return self.mapping.get(str(catalog_id))

    def update(self, mapping: Dict[str, str]):
        self.mapping = {str(k): str(v) for k, v in mapping.items() if v}

    async def refresh(self) -> bool:
        """Reload the mapping; on failure the previous mapping stays."""
        if not self.url:
            return False
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_s)) as session:
                async with session.get(self.url) as response:
                    if response.status != 200:
                        logger.error(f"Logo id map: HTTP {response.status}")
                        return False
                    data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error(f"Logo id map load failed, keeping {len(self.mapping)} entries: {e}")
            return False

        if not isinstance(data, dict):
            logger.error("Logo id map: payload is not an object")
            return False
        self.update(data)
        logger.info(f"Logo id map loaded: {len(self.mapping)} entries")
        return True
