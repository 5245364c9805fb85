"""
pgfe distribution version file.
"""

# Copyright (C) 2023-2024 The pgfe Team

# Use a versioning scheme as defined in
# https://www.python.org/dev/peps/pep-0440/
__version__ = "1.0.0"
