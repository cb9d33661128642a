"""Canonical API version constant.

Kept in its own module so routes can report the version without
importing the application factory.
"""

API_VERSION = "0.1.0"
