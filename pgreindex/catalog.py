"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of pgreindex, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Catalog discovery for PostgreSQL servers.

Lists the user databases on a server and the user-schema indexes inside one
database. Both queries read the system catalog through a DatabaseHandle and
raise DiscoveryError when the catalog cannot be read.
"""

import logging
from collections.abc import Sequence

from sqlalchemy.exc import SQLAlchemyError

from pgreindex.connection import DatabaseHandle
from pgreindex.core.config import DEFAULT_DATABASE_DENYLIST
from pgreindex.exceptions import DiscoveryError
from pgreindex.models import IndexDescriptor

logger = logging.getLogger(__name__)

# Schemas whose indexes belong to the server, not to the application
SYSTEM_SCHEMAS = ("pg_catalog", "information_schema", "pg_toast")

DATABASES_QUERY = """
    SELECT datname
    FROM pg_database
    WHERE datistemplate = false
      AND datname::text <> ALL(:denylist)
"""

INDEXES_QUERY = """
    SELECT schemaname, indexname
    FROM pg_indexes
    WHERE schemaname::text <> ALL(:system_schemas)
    ORDER BY schemaname, indexname
"""


class CatalogDiscoverer:
    """
    Reads databases and indexes from the server catalog.
    """

    def __init__(self, handle: DatabaseHandle):
        """
        Initialize the discoverer.

        Args:
            handle: Live handle to the database whose catalog is read

        """
        self.handle = handle

    def list_databases(self, denylist: Sequence[str] = DEFAULT_DATABASE_DENYLIST) -> list[str]:
        """
        List the non-template databases that are not denylisted.

        Args:
            denylist: Database names never returned

        Returns:
            Database names in catalog order

        Raises:
            DiscoveryError: If the catalog query fails

        """
        try:
            rows = self.handle.fetch_all(DATABASES_QUERY, {"denylist": list(denylist)})
        except SQLAlchemyError as e:
            raise DiscoveryError(self.handle.database, "databases", e) from e

        databases = [row[0] for row in rows]
        logger.debug(f"Discovered {len(databases)} databases: {', '.join(databases)}")
        return databases

    def list_indexes(self) -> list[IndexDescriptor]:
        """
        List the indexes of every user schema in the handle's database.

        An empty list is a valid result.

        Raises:
            DiscoveryError: If the catalog query fails

        """
        try:
            rows = self.handle.fetch_all(INDEXES_QUERY, {"system_schemas": list(SYSTEM_SCHEMAS)})
        except SQLAlchemyError as e:
            raise DiscoveryError(self.handle.database, "indexes", e) from e

        indexes = [IndexDescriptor(schema_name=row[0], index_name=row[1]) for row in rows]
        logger.debug(f"Discovered {len(indexes)} indexes in {self.handle.database}")
        return indexes
