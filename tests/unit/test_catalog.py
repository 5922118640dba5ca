"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of pgreindex, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Unit tests for catalog discovery.
"""

from unittest.mock import MagicMock

import pytest

from pgreindex.catalog import SYSTEM_SCHEMAS, CatalogDiscoverer
from pgreindex.core.config import DEFAULT_DATABASE_DENYLIST
from pgreindex.exceptions import DiscoveryError
from pgreindex.models import IndexDescriptor
from tests.fixtures.database import FakeDatabaseHandle, catalog_failure


@pytest.mark.unit
class TestListDatabases:
    """Tests for database discovery."""

    def test_denylisted_databases_are_excluded(self):
        """Test system, template and reserved names never come back."""
        handle = FakeDatabaseHandle(
            "postgres", databases=["postgres", "app1", "template1", "zcloud", "app2"]
        )
        assert CatalogDiscoverer(handle).list_databases() == ["app1", "app2"]

    def test_catalog_order_is_kept(self):
        """Test names are returned in the order the catalog gives them."""
        handle = FakeDatabaseHandle("postgres", databases=["zeta", "alpha"])
        assert CatalogDiscoverer(handle).list_databases() == ["zeta", "alpha"]

    def test_custom_denylist(self):
        """Test extra exclusions are honoured."""
        handle = FakeDatabaseHandle("postgres", databases=["app1", "archive"])
        denylist = DEFAULT_DATABASE_DENYLIST + ("archive",)
        assert CatalogDiscoverer(handle).list_databases(denylist) == ["app1"]

    def test_query_filters_templates_and_passes_denylist(self):
        """Test the catalog query itself excludes templates and binds the denylist."""
        handle = MagicMock()
        handle.fetch_all.return_value = [("app1",)]

        CatalogDiscoverer(handle).list_databases()

        query, params = handle.fetch_all.call_args.args
        assert "pg_database" in query
        assert "datistemplate = false" in query
        assert params == {"denylist": list(DEFAULT_DATABASE_DENYLIST)}

    def test_query_failure(self):
        """Test a failing catalog query raises DiscoveryError."""
        handle = FakeDatabaseHandle("postgres", catalog_error=catalog_failure())
        with pytest.raises(DiscoveryError, match="databases in database postgres"):
            CatalogDiscoverer(handle).list_databases()


@pytest.mark.unit
class TestListIndexes:
    """Tests for index discovery."""

    def test_user_indexes_are_listed(self):
        """Test indexes of user schemas become descriptors."""
        handle = FakeDatabaseHandle(
            "app1",
            indexes=[("public", "idx_b"), ("pg_catalog", "pg_class_oid_index"), ("public", "idx_a")],
        )
        assert CatalogDiscoverer(handle).list_indexes() == [
            IndexDescriptor("public", "idx_a"),
            IndexDescriptor("public", "idx_b"),
        ]

    def test_system_schemas_are_bound(self):
        """Test the query receives the system schema exclusions."""
        handle = MagicMock()
        handle.fetch_all.return_value = []

        CatalogDiscoverer(handle).list_indexes()

        query, params = handle.fetch_all.call_args.args
        assert "pg_indexes" in query
        assert params == {"system_schemas": list(SYSTEM_SCHEMAS)}
        assert "information_schema" in SYSTEM_SCHEMAS

    def test_no_indexes_is_not_an_error(self):
        """Test an empty database yields an empty list."""
        assert CatalogDiscoverer(FakeDatabaseHandle("app2")).list_indexes() == []

    def test_query_failure(self):
        """Test a failing catalog query raises DiscoveryError with the database name."""
        handle = FakeDatabaseHandle("app1", catalog_error=catalog_failure("relation does not exist"))
        with pytest.raises(DiscoveryError) as exc_info:
            CatalogDiscoverer(handle).list_indexes()

        assert exc_info.value.database == "app1"
        assert "relation does not exist" in str(exc_info.value)
