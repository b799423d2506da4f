"""
Built-in backend adapters.

Importing this package registers every bundled adapter with the client
factory.
"""

from . import alpaca, paper  # noqa: F401
