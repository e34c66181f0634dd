"""Station logo catalogs and the tiered resolver."""

from .catalogs import IdLogoMap, LocalLogoCatalog, RemoteLogoCatalog
from .logo_resolver import LogoResolver

__all__ = ['IdLogoMap', 'LocalLogoCatalog', 'LogoResolver', 'RemoteLogoCatalog']
