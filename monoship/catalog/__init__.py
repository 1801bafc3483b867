"""Service catalog module.

This module handles:
- Service descriptor schema and kind-exclusive field validation
- Loading catalogs from YAML/JSON files
"""

from monoship.catalog.io import dump_catalog, load_catalog, parse_catalog_data
from monoship.catalog.schema import ServiceCatalog, ServiceDescriptor

__all__ = [
    "ServiceCatalog",
    "ServiceDescriptor",
    "dump_catalog",
    "load_catalog",
    "parse_catalog_data",
]
