"""Stores the version number for the easyws library.

The `__version__` constant is read by the build backend when packaging.
"""

# The single source of truth for the package version.
__version__ = "0.1.0"
