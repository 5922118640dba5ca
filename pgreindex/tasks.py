"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of pgreindex, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Rebuild statement generation.

Every index becomes its own REINDEX statement so that one failing rebuild
never takes others down with it.
"""

from collections.abc import Iterable

from pgreindex.models import IndexDescriptor, MaintenanceTask


def build_statement(descriptor: IndexDescriptor, concurrently: bool = False) -> str:
    """
    Build the REINDEX statement for one index.

    Args:
        descriptor: Index to rebuild
        concurrently: Use REINDEX ... CONCURRENTLY (PostgreSQL 12+)

    Returns:
        Statement text, identical for identical inputs

    """
    keyword = "REINDEX INDEX CONCURRENTLY" if concurrently else "REINDEX INDEX"
    return f"{keyword} {descriptor.quoted_name}"


def build_task(descriptor: IndexDescriptor, concurrently: bool = False) -> MaintenanceTask:
    """Turn one index descriptor into one maintenance task."""
    return MaintenanceTask(descriptor=descriptor, statement=build_statement(descriptor, concurrently))


def generate_tasks(
    descriptors: Iterable[IndexDescriptor], concurrently: bool = False
) -> list[MaintenanceTask]:
    """Build one task per descriptor, in descriptor order."""
    return [build_task(descriptor, concurrently) for descriptor in descriptors]
