"""
formtree exception classes.

This package provides all exception types used throughout formtree for
consistent error handling and reporting.
"""

from formtree.exceptions.core import (
    CommandSyntaxError,
    ConfigSyntaxError,
    ErrorContext,
    FormTreeError,
    FunctionDefinitionError,
    FunctionEvaluationError,
    NodeNotFoundError,
    OverrideFragChainError,
    StaleAnchorError,
    SubstitutionError,
    UnavailableError,
    UserVisibleError,
)

__all__ = [
    "FormTreeError",
    "ErrorContext",
    "ConfigSyntaxError",
    "NodeNotFoundError",
    "CommandSyntaxError",
    "FunctionDefinitionError",
    "FunctionEvaluationError",
    "UnavailableError",
    "StaleAnchorError",
    "OverrideFragChainError",
    "UserVisibleError",
    "SubstitutionError",
]
