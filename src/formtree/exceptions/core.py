"""
Exception classes for formtree document processing.

This module defines specific exception types for the error conditions that
can occur while parsing embedded commands, evaluating transformation
functions and refactoring form fields.
"""

from dataclasses import dataclass


@dataclass
class ErrorContext:
    """
    Context information for error messages.

    Captures where an error occurred in document terms (anchor name, command
    payload) so that log lines and user-visible messages can point at the
    offending element.

    Params:
        anchor_name: Name of the anchor the failing element is bound to
        payload: The raw text that failed to parse or evaluate
        field_id: Logical field identifier involved, if any
        function_name: Transformation function involved, if any
    """

    anchor_name: str | None = None
    payload: str | None = None
    field_id: str | None = None
    function_name: str | None = None

    def format_location(self) -> str:
        """
        Format location information for an error message.

        Returns:
            Formatted multi-line location string, empty if nothing is known
        """
        lines = []
        if self.anchor_name:
            lines.append(f"  at anchor {self.anchor_name!r}")
        if self.field_id:
            lines.append(f"  for field {self.field_id!r}")
        if self.function_name:
            lines.append(f"  in function {self.function_name!r}")
        if self.payload:
            lines.append(f"  payload: {self.payload}")
        return "\n".join(lines)


class FormTreeError(Exception):
    """Base exception for all formtree errors."""

    pass


class ConfigSyntaxError(FormTreeError):
    """Raised when configuration text cannot be parsed."""

    def __init__(self, message: str, position: int | None = None, text: str | None = None):
        """
        Initialize the exception.

        Params:
            message: What went wrong
            position: Character offset in the input where parsing failed
            text: The input text, used to show an excerpt
        """
        self.position = position
        self.text = text
        full_message = message
        if position is not None:
            full_message = f"{message} at position {position}"
            if text is not None:
                excerpt = text[max(0, position - 20) : position + 20]
                full_message += f" near {excerpt!r}"
        super().__init__(full_message)


class NodeNotFoundError(FormTreeError, KeyError):
    """Raised when a configuration node query has no match."""

    def __init__(self, parent: str, name: str):
        """
        Initialize the exception.

        Params:
            parent: Name of the node that was searched
            name: Name of the child that was not found
        """
        self.parent = parent
        self.name = name
        super().__init__(f"Node '{parent}' has no child '{name}'")

    def __str__(self) -> str:
        return self.args[0]


class CommandSyntaxError(FormTreeError):
    """Raised when an anchor payload is not a valid document command."""

    def __init__(self, reason: str, context: ErrorContext | None = None):
        """
        Initialize the exception.

        Params:
            reason: Why the command was rejected
            context: ErrorContext with the anchor name and payload
        """
        self.reason = reason
        self.context = context
        message = reason
        if context:
            location_info = context.format_location()
            if location_info:
                message = f"{reason}\n{location_info}"
        super().__init__(message)


class FunctionDefinitionError(FormTreeError):
    """Raised when a function definition node cannot be turned into a Function."""

    def __init__(self, function_name: str | None, reason: str):
        """
        Initialize the exception.

        Params:
            function_name: Name of the definition, None for anonymous bodies
            reason: Why the definition is invalid
        """
        self.function_name = function_name
        self.reason = reason
        if function_name:
            super().__init__(f"Invalid definition of function '{function_name}': {reason}")
        else:
            super().__init__(f"Invalid function definition: {reason}")


class FunctionEvaluationError(FormTreeError):
    """Raised when a function fails while computing its value."""

    pass


class UnavailableError(FormTreeError):
    """Raised when a mutation targets something that does not exist or is read-only."""

    def __init__(self, message: str, cause: Exception | None = None):
        self.cause = cause
        super().__init__(message)


class StaleAnchorError(FormTreeError):
    """Raised by document collaborators when an anchor no longer exists."""

    def __init__(self, anchor_name: str):
        self.anchor_name = anchor_name
        super().__init__(f"Anchor '{anchor_name}' no longer exists")


class OverrideFragChainError(FormTreeError):
    """Raised when overrideFrag commands would form a replacement chain."""

    def __init__(self, frag_id: str):
        """
        Initialize the exception.

        Params:
            frag_id: The fragment id that already takes part in another override
        """
        self.frag_id = frag_id
        super().__init__(
            "overrideFrag cannot define replacement chains, but fragment "
            f"'{frag_id}' already appears in another overrideFrag command"
        )


class UserVisibleError(FormTreeError):
    """Error that is shown to the user through the diagnostic channel."""

    def __init__(self, message: str, cause: Exception | None = None):
        """
        Initialize the exception.

        Params:
            message: Text shown to the user
            cause: Optional underlying exception, appended to the message
        """
        self.message = message
        self.cause = cause
        super().__init__(message)


class SubstitutionError(UserVisibleError):
    """Raised when a field cannot be rewritten by a substitution."""

    def __init__(self, field_id: str, reason: str):
        self.field_id = field_id
        self.reason = reason
        super().__init__(f"Cannot substitute field '{field_id}': {reason}")
