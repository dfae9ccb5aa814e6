"""
Database module - PyMySQL handles and the schema they talk to.
"""

from .handle import DatabaseHandle

__all__ = ["DatabaseHandle"]
