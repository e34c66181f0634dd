"""
Tiered logo lookup for candidate stations.

Order, first hit wins:

    1. Catalog id map          candidate.catalog_id -> URL
    2. Local catalog           exact name, exact PI, containment name,
                               containment PI
    3. Remote country listing  exact "PI_NAME", exact "PI", exact name
                               variants, containment (min length guard),
                               looser containment keeping the brand word in
                               the file names
    4. Default logo

Matching is heuristic. The tier order is fixed; the rules inside a tier are
approximate by nature.
"""

import logging
import re
from typing import List, Optional

from ..interfaces.station_models import CandidateResult
from ..search.normalize import DEFAULT_BRAND_WORD, normalize_identifier, normalize_name
from .catalogs import IdLogoMap, LocalLogoCatalog, RemoteLogoCatalog

logger = logging.getLogger(__name__)

MIN_CONTAINMENT_LENGTH = 4
MIN_FILE_KEY_LENGTH = 3
NO_IDENTIFIER = "NOPI"
DEFAULT_LOGO_URL = 'https://tef.noobish.eu/logos/default-logo.png'

_EXTENSION = re.compile(r'\.(svg|gif|webp|png|jpg|jpeg)$', re.IGNORECASE)
_HEX_ID_PREFIX = re.compile(r'^[0-9A-F]{4}_', re.IGNORECASE)


def strip_extension(file_name: str) -> str:
    return _EXTENSION.sub('', file_name)


class LogoResolver:
    """Resolves a logo URL for a candidate; never returns an empty string."""

    def __init__(
        self,
        local: Optional[LocalLogoCatalog] = None,
        remote: Optional[RemoteLogoCatalog] = None,
        id_map: Optional[IdLogoMap] = None,
        default_logo: str = DEFAULT_LOGO_URL,
        brand_word: str = DEFAULT_BRAND_WORD,
        default_country: str = '',
    ):
        self.local = local or LocalLogoCatalog()
        self.remote = remote
        self.id_map = id_map
        if not (default_logo or '').strip():
            logger.warning(f"Empty default logo configured, using {DEFAULT_LOGO_URL}")
            default_logo = DEFAULT_LOGO_URL
        self.default_logo = default_logo
        self.brand_word = brand_word
        self.default_country = default_country.upper()

    async def resolve(self, candidate: CandidateResult) -> str:
        url = self._from_id_map(candidate)
        if url:
            return url

        url = self._from_local(candidate)
        if url:
            return url

        url = await self._from_remote(candidate)
        if url:
            return url

        return self.default_logo

    def _from_id_map(self, candidate: CandidateResult) -> Optional[str]:
        if self.id_map is None:
            return None
        return self.id_map.lookup(candidate.catalog_id)

    def _usable_identifier(self, candidate: CandidateResult) -> Optional[str]:
        pi = (candidate.identifier or '').strip()
        if not pi or pi.upper() == NO_IDENTIFIER:
            return None
        return pi

    def _from_local(self, candidate: CandidateResult) -> Optional[str]:
        if not len(self.local):
            return None

        name_key = normalize_name(candidate.station, self.brand_word)
        pi = self._usable_identifier(candidate)
        pi_key = normalize_name(pi, self.brand_word) if pi else ''

        file_name = (self.local.find_exact(name_key)
                     or self.local.find_exact(pi_key)
                     or self.local.find_containing(name_key)
                     or self.local.find_containing(pi_key))
        if file_name:
            return self.local.url_for(file_name)
        return None

    def _name_variants(self, station: str) -> List[str]:
        upper = (station or '').upper()
        raw = [
            upper,
            upper.replace(self.brand_word.upper(), '') if self.brand_word else upper,
            upper.replace(' ', ''),
        ]
        variants = []
        for text in raw:
            for key in (normalize_name(text, self.brand_word), normalize_name(text, '')):
                if key and key not in variants:
                    variants.append(key)
        return variants

    def _file_key(self, file_name: str, keep_brand: bool = False) -> str:
        stem = _HEX_ID_PREFIX.sub('', strip_extension(file_name))
        return normalize_name(stem, '' if keep_brand else self.brand_word)

    async def _from_remote(self, candidate: CandidateResult) -> Optional[str]:
        if self.remote is None:
            return None
        country = (candidate.country_code or self.default_country).upper()
        if not country:
            return None

        files = await self.remote.files_for(country)
        if not files:
            return None

        pi = normalize_identifier(self._usable_identifier(candidate))
        if pi:
            combined = f"{pi}_{(candidate.station or '').upper().replace(' ', '')}"
            for file_name in files:
                if strip_extension(file_name).upper() == combined:
                    return self.remote.url_for(country, file_name)
            for file_name in files:
                if strip_extension(file_name).upper() == pi:
                    return self.remote.url_for(country, file_name)

        variants = self._name_variants(candidate.station)
        if not variants:
            return None

        for file_name in files:
            if self._file_key(file_name) in variants:
                return self.remote.url_for(country, file_name)

        long_variants = [v for v in variants if len(v) >= MIN_CONTAINMENT_LENGTH]
        for file_name in files:
            key = self._file_key(file_name)
            if len(key) < MIN_FILE_KEY_LENGTH:
                continue
            if any(key in v or v in key for v in long_variants):
                return self.remote.url_for(country, file_name)

        stripped = normalize_name(candidate.station, self.brand_word)
        if len(stripped) >= MIN_CONTAINMENT_LENGTH:
            for file_name in files:
                key = self._file_key(file_name, keep_brand=True)
                if len(key) >= MIN_FILE_KEY_LENGTH and (stripped in key or key in stripped):
                    return self.remote.url_for(country, file_name)

        return None
