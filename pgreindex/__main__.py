"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of pgreindex, licensed under the MIT License.
See LICENSE file for details.
"""

from pgreindex.cli import main

if __name__ == "__main__":
    main()
