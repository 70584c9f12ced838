"""
Transformation functions (TRAFOs) and their library.
"""

from formtree.functions.callbacks import CallbackRegistry
from formtree.functions.expressions import (
    FALSE,
    TRUE,
    And,
    Call,
    Cat,
    Extern,
    Function,
    If,
    Literal,
    Match,
    Not,
    Or,
    Replace,
    StrCmp,
    Value,
    parse_function,
    rename_value_references,
)
from formtree.functions.library import FunctionLibrary

__all__ = [
    "TRUE",
    "FALSE",
    "And",
    "Call",
    "CallbackRegistry",
    "Cat",
    "Extern",
    "Function",
    "FunctionLibrary",
    "If",
    "Literal",
    "Match",
    "Not",
    "Or",
    "Replace",
    "StrCmp",
    "Value",
    "parse_function",
    "rename_value_references",
]
