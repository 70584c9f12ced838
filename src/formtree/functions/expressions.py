"""
Transformation function expressions.

A function definition is a configuration node whose children form the body:

    Gruss(IF(STRCMP(VALUE 'Anrede' 'Herr') THEN('Sehr geehrter Herr ') ELSE('Sehr geehrte Frau '))
          VALUE 'Nachname')

Several body children are concatenated. Booleans are the strings "true" and
"false". Only the closed set of expression kinds below is supported.
"""

import re
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable, Mapping

from formtree.core.config_node import ConfigNode
from formtree.exceptions import FunctionDefinitionError, FunctionEvaluationError

if TYPE_CHECKING:
    from formtree.functions.callbacks import CallbackRegistry
    from formtree.functions.library import FunctionLibrary

TRUE = "true"
FALSE = "false"

_JAVA_GROUP_REFERENCE = re.compile(r"\$(\d+)")


def _merge_parameters(functions: list["Function"]) -> list[str]:
    parameters: list[str] = []
    for function in functions:
        for name in function.parameters:
            if name not in parameters:
                parameters.append(name)
    return parameters


def _bool(value: bool) -> str:
    return TRUE if value else FALSE


class Function(ABC):
    """Base class of all function expressions."""

    @property
    def parameters(self) -> list[str]:
        """Ordered ids this function reads, without duplicates."""
        return []

    @abstractmethod
    def evaluate(self, values: Mapping[str, str]) -> str:
        """
        Compute the function value.

        Params:
            values: Parameter values; missing ids read as ""

        Returns:
            The computed string

        Raises:
            FunctionEvaluationError: If the value cannot be computed
        """


class Literal(Function):
    def __init__(self, text: str):
        self.text = text

    def evaluate(self, values: Mapping[str, str]) -> str:
        return self.text

    def __repr__(self) -> str:
        return f"Literal({self.text!r})"


class Value(Function):
    """Reads one id from the parameter values."""

    def __init__(self, field_id: str):
        self.field_id = field_id

    @property
    def parameters(self) -> list[str]:
        return [self.field_id]

    def evaluate(self, values: Mapping[str, str]) -> str:
        value = values.get(self.field_id)
        return "" if value is None else value

    def __repr__(self) -> str:
        return f"Value({self.field_id!r})"


class _Composite(Function):
    def __init__(self, parts: list[Function]):
        self.parts = parts

    @property
    def parameters(self) -> list[str]:
        return _merge_parameters(self.parts)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.parts!r})"


class Cat(_Composite):
    def evaluate(self, values: Mapping[str, str]) -> str:
        return "".join(part.evaluate(values) for part in self.parts)


class StrCmp(_Composite):
    """True if all parts evaluate to the same string."""

    def evaluate(self, values: Mapping[str, str]) -> str:
        results = [part.evaluate(values) for part in self.parts]
        return _bool(all(result == results[0] for result in results))


class And(_Composite):
    def evaluate(self, values: Mapping[str, str]) -> str:
        return _bool(all(part.evaluate(values) == TRUE for part in self.parts))


class Or(_Composite):
    def evaluate(self, values: Mapping[str, str]) -> str:
        return _bool(any(part.evaluate(values) == TRUE for part in self.parts))


class Not(_Composite):
    """True if none of the parts is true."""

    def evaluate(self, values: Mapping[str, str]) -> str:
        return _bool(not any(part.evaluate(values) == TRUE for part in self.parts))


class If(Function):
    def __init__(self, condition: Function, then: Function, otherwise: Function):
        self.condition = condition
        self.then = then
        self.otherwise = otherwise

    @property
    def parameters(self) -> list[str]:
        return _merge_parameters([self.condition, self.then, self.otherwise])

    def evaluate(self, values: Mapping[str, str]) -> str:
        if self.condition.evaluate(values) == TRUE:
            return self.then.evaluate(values)
        return self.otherwise.evaluate(values)


class Match(Function):
    """True if the whole input matches the regular expression."""

    def __init__(self, input: Function, pattern: re.Pattern):
        self.input = input
        self.pattern = pattern

    @property
    def parameters(self) -> list[str]:
        return self.input.parameters

    def evaluate(self, values: Mapping[str, str]) -> str:
        return _bool(self.pattern.fullmatch(self.input.evaluate(values)) is not None)


class Replace(Function):
    """Replace all matches of a regular expression; `$1` style group references are accepted."""

    def __init__(self, input: Function, pattern: re.Pattern, replacement: Function):
        self.input = input
        self.pattern = pattern
        self.replacement = replacement

    @property
    def parameters(self) -> list[str]:
        return _merge_parameters([self.input, self.replacement])

    def evaluate(self, values: Mapping[str, str]) -> str:
        replacement = _JAVA_GROUP_REFERENCE.sub(r"\\g<\1>", self.replacement.evaluate(values))
        try:
            return self.pattern.sub(replacement, self.input.evaluate(values))
        except (re.error, IndexError) as e:
            raise FunctionEvaluationError(f"Invalid replacement {replacement!r}: {e}") from e


class Call(Function):
    """Call of another function of the library, resolved at evaluation time.

    Recursive references are detected when they are resolved: a call that is
    reached again while it is being resolved raises instead of recursing.
    """

    def __init__(self, name: str, library: "FunctionLibrary"):
        self.name = name
        self.library = library
        self._resolving = False

    @property
    def parameters(self) -> list[str]:
        if self._resolving:
            raise FunctionDefinitionError(self.name, "recursive FUNCTION reference")
        self._resolving = True
        try:
            return self.library.parameters(self.name)
        finally:
            self._resolving = False

    def evaluate(self, values: Mapping[str, str]) -> str:
        function = self.library.get(self.name)
        if function is None:
            raise FunctionEvaluationError(f"Function '{self.name}' is not defined")
        if self._resolving:
            raise FunctionEvaluationError(f"Function '{self.name}' calls itself")
        self._resolving = True
        try:
            return function.evaluate(values)
        finally:
            self._resolving = False

    def __repr__(self) -> str:
        return f"Call({self.name!r})"


class Extern(Function):
    """User-registered Python callback receiving the values of its PARAMS."""

    def __init__(self, url: str, params: list[str], callback: Callable[..., object]):
        self.url = url
        self.params = params
        self.callback = callback

    @property
    def parameters(self) -> list[str]:
        return list(dict.fromkeys(self.params))

    def evaluate(self, values: Mapping[str, str]) -> str:
        args = [values.get(name) or "" for name in self.params]
        try:
            result = self.callback(*args)
        except Exception as e:
            raise FunctionEvaluationError(f"Callback '{self.url}' failed: {e}") from e
        return "" if result is None else str(result)

    def __repr__(self) -> str:
        return f"Extern({self.url!r}, {self.params!r})"


class _FunctionBuilder:
    def __init__(
        self,
        name: str | None,
        library: "FunctionLibrary | None",
        callbacks: "CallbackRegistry | None",
    ):
        self.name = name
        self.library = library
        self.callbacks = callbacks

    def error(self, reason: str) -> FunctionDefinitionError:
        return FunctionDefinitionError(self.name, reason)

    def body(self, nodes: list[ConfigNode]) -> Function:
        if not nodes:
            raise self.error("empty function body")
        parts = [self.expression(node) for node in nodes]
        return parts[0] if len(parts) == 1 else Cat(parts)

    def expression(self, node: ConfigNode) -> Function:
        kind = node.name
        if kind == "":
            if node.is_scalar:
                return Literal(node.value)
            return self.body(node.children)
        if kind == "VALUE":
            field_id = node.text
            if not field_id:
                raise self.error("VALUE needs an id")
            return Value(field_id)
        if kind == "FUNCTION":
            if self.library is None:
                raise self.error("FUNCTION references need a function library")
            return Call(node.text, self.library)
        if node.is_scalar:
            raise self.error(f"'{kind}' is not a valid scalar expression")

        if kind == "CAT":
            return Cat([self.expression(child) for child in node.children])
        if kind == "STRCMP":
            if len(node.children) < 2:
                raise self.error("STRCMP needs at least two arguments")
            return StrCmp([self.expression(child) for child in node.children])
        if kind in ("AND", "OR", "NOT"):
            parts = [self.expression(child) for child in node.children]
            return {"AND": And, "OR": Or, "NOT": Not}[kind](parts)
        if kind == "IF":
            return self._if(node)
        if kind == "MATCH":
            if len(node.children) != 2:
                raise self.error("MATCH needs an input and a regular expression")
            return Match(self.expression(node.children[0]), self._pattern(node.children[1]))
        if kind == "REPLACE":
            if len(node.children) != 3:
                raise self.error("REPLACE needs an input, a regular expression and a replacement")
            return Replace(
                self.expression(node.children[0]),
                self._pattern(node.children[1]),
                self.expression(node.children[2]),
            )
        if kind == "EXTERN":
            return self._extern(node)
        raise self.error(f"Unknown function kind '{kind}'")

    def _if(self, node: ConfigNode) -> If:
        then = node.find("THEN")
        otherwise = node.find("ELSE")
        conditions = [child for child in node.children if child.name not in ("THEN", "ELSE")]
        if len(conditions) != 1 or then is None:
            raise self.error("IF needs exactly one condition and a THEN part")
        return If(
            self.expression(conditions[0]),
            self._branch(then),
            self._branch(otherwise) if otherwise is not None else Literal(""),
        )

    def _branch(self, node: ConfigNode) -> Function:
        if node.is_scalar:
            return Literal(node.value)
        if not node.children:
            return Literal("")
        return self.body(node.children)

    def _pattern(self, node: ConfigNode) -> re.Pattern:
        if not node.is_scalar:
            raise self.error("regular expression must be a string")
        try:
            return re.compile(node.value)
        except re.error as e:
            raise self.error(f"invalid regular expression {node.value!r}: {e}") from e

    def _extern(self, node: ConfigNode) -> Extern:
        url = node.get_text("URL")
        if not url:
            raise self.error("EXTERN needs a URL")
        params_node = node.find("PARAMS")
        params = [child.text for child in params_node.children] if params_node else []
        if self.callbacks is None or url not in self.callbacks:
            raise self.error(f"No callback registered for '{url}'")
        return Extern(url, params, self.callbacks.get(url))


def parse_function(
    node: ConfigNode,
    library: "FunctionLibrary | None" = None,
    callbacks: "CallbackRegistry | None" = None,
) -> Function:
    """
    Build a Function from a definition node.

    Params:
        node: Definition node; its children form the body
        library: Library that FUNCTION references are resolved against
        callbacks: Registry that EXTERN URLs are resolved against

    Returns:
        The parsed Function

    Raises:
        FunctionDefinitionError: If the body is empty or contains an unknown kind
    """
    builder = _FunctionBuilder(node.name or None, library, callbacks)
    return builder.body(node.children)


def rename_value_references(node: ConfigNode, old_id: str, new_id: str) -> int:
    """
    Rewrite `VALUE 'old_id'` to `VALUE 'new_id'` anywhere below `node`.

    Returns:
        Number of rewritten references
    """
    count = 0
    for child in node.children:
        if child.name == "VALUE":
            if child.is_scalar and child.value == old_id:
                child.value = new_id
                count += 1
            elif (
                len(child.children) == 1
                and child.children[0].is_scalar
                and child.children[0].value == old_id
            ):
                child.children[0].value = new_id
                count += 1
        elif not child.is_scalar:
            count += rename_value_references(child, old_id, new_id)
    return count
