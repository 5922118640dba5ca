"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of pgreindex, licensed under the MIT License.
See LICENSE file for details.
"""

"""
pgreindex - PostgreSQL index rebuild driver
A CLI tool that rebuilds every index in every user database on a server
"""

__version__ = "0.0.1"
