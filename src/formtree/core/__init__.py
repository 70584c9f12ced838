"""
Core formtree components.

This package provides the configuration tree that serves as wire format and
in-memory representation, together with the settings model.
"""

from formtree.core.config_node import (
    ConfigNode,
    ConfigParser,
    QueryResult,
    parse_config,
    serialize,
)
from formtree.core.settings import DataIds, FormTreeSettings

__all__ = [
    "ConfigNode",
    "ConfigParser",
    "QueryResult",
    "parse_config",
    "serialize",
    "DataIds",
    "FormTreeSettings",
]
