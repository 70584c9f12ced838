"""
Configuration tree used as wire format and in-memory form description.

A `ConfigNode` is either a scalar (`KEY 'value'`) or a section holding an
ordered list of children (`KEY(...)`). The same text grammar is used for
anchor payloads, persisted blobs and function definitions:

    WM(CMD 'insertFormValue' ID 'Nachname' TRAFO 'Upper')
    Formular(Funktionen(Gruss(CAT(VALUE 'Anrede' ' ' VALUE 'Nachname'))))
"""

import re
from dataclasses import dataclass, field
from typing import Iterator

from formtree.exceptions import ConfigSyntaxError, NodeNotFoundError

BAREWORD_PATTERN = re.compile(r"[^\s(),'\"#]+")
_ESCAPE_PATTERN = re.compile(r"%(n|%)")


@dataclass
class ConfigNode:
    """Node of a configuration tree.

    Repeated child names are allowed; lookups by name return the last match so
    that later sections override earlier ones.
    """

    name: str
    value: str | None = None
    children: list["ConfigNode"] = field(default_factory=list)

    def __post_init__(self):
        if self.value is not None and self.children:
            raise ValueError(f"Scalar node '{self.name}' cannot have children")

    @classmethod
    def scalar(cls, name: str, value: str) -> "ConfigNode":
        return cls(name=name, value=value)

    @classmethod
    def section(cls, name: str, *children: "ConfigNode") -> "ConfigNode":
        return cls(name=name, children=list(children))

    @property
    def is_scalar(self) -> bool:
        return self.value is not None

    @property
    def text(self) -> str:
        """Scalar value, or the concatenated text of all children."""
        if self.value is not None:
            return self.value
        return "".join(child.text for child in self.children)

    def __iter__(self) -> Iterator["ConfigNode"]:
        return iter(self.children)

    def __len__(self) -> int:
        return len(self.children)

    def children_named(self, name: str) -> list["ConfigNode"]:
        return [child for child in self.children if child.name == name]

    def has(self, name: str) -> bool:
        return any(child.name == name for child in self.children)

    def get(self, name: str) -> "ConfigNode":
        """
        Get the last direct child with the given name.

        Params:
            name: Child name to look up

        Returns:
            The last matching child

        Raises:
            NodeNotFoundError: If no direct child has that name
        """
        for child in reversed(self.children):
            if child.name == name:
                return child
        raise NodeNotFoundError(self.name, name)

    def get_text(self, name: str, default: str | None = None) -> str | None:
        """Text of the last direct child `name`, or `default` if there is none."""
        for child in reversed(self.children):
            if child.name == name:
                return child.text
        return default

    def find(self, *path: str) -> "ConfigNode | None":
        """Follow `path` taking the last match at every step; None if a step fails."""
        node = self
        for name in path:
            try:
                node = node.get(name)
            except NodeNotFoundError:
                return None
        return node

    def query(self, name: str, min_level: int = 1) -> "QueryResult":
        """
        Breadth-first search for nodes called `name`.

        Only the shallowest level (at least `min_level` below this node) that
        contains matches is returned, in document order.

        Params:
            name: Node name to search for
            min_level: Minimum depth of matches; 0 includes this node itself

        Returns:
            QueryResult with all matches of the shallowest matching level
        """
        if min_level <= 0 and self.name == name:
            return QueryResult([self])
        return _breadth_first(self.children, name, min_level)

    def add_child(self, child: "ConfigNode") -> "ConfigNode":
        if self.value is not None:
            raise ValueError(f"Cannot add children to scalar node '{self.name}'")
        self.children.append(child)
        return child

    def add_scalar(self, name: str, value: str) -> "ConfigNode":
        return self.add_child(ConfigNode.scalar(name, value))

    def add_section(self, name: str) -> "ConfigNode":
        return self.add_child(ConfigNode.section(name))

    def remove_child(self, child: "ConfigNode") -> bool:
        """Remove `child` by identity; returns False if it is not a child."""
        for index, candidate in enumerate(self.children):
            if candidate is child:
                del self.children[index]
                return True
        return False

    def clear(self) -> None:
        self.children.clear()

    def copy(self) -> "ConfigNode":
        return ConfigNode(
            name=self.name,
            value=self.value,
            children=[child.copy() for child in self.children],
        )

    def to_text(self, pretty: bool = False) -> str:
        return serialize(self, pretty=pretty)


class QueryResult(list):
    """List of query matches that can be queried again."""

    def query(self, name: str, min_level: int = 1) -> "QueryResult":
        # the matches themselves form level 1
        return _breadth_first(list(self), name, min_level)

    def last(self) -> ConfigNode:
        if not self:
            raise NodeNotFoundError("<query results>", "<last>")
        return self[-1]

    def first(self) -> ConfigNode:
        if not self:
            raise NodeNotFoundError("<query results>", "<first>")
        return self[0]


def _breadth_first(level_nodes: list[ConfigNode], name: str, min_level: int) -> QueryResult:
    level = 1
    while level_nodes:
        if level >= min_level:
            matches = [node for node in level_nodes if node.name == name]
            if matches:
                return QueryResult(matches)
        level_nodes = [child for node in level_nodes for child in node.children]
        level += 1
    return QueryResult()


# --- text grammar -----------------------------------------------------------

_OPEN = "("
_CLOSE = ")"
_STRING = "string"
_WORD = "word"
_EOF = "eof"


@dataclass
class _Token:
    kind: str
    text: str
    position: int


class _Tokenizer:
    def __init__(self, text: str):
        self.text = text
        self.position = 0

    def tokens(self) -> list[_Token]:
        result = []
        text = self.text
        length = len(text)
        while True:
            pos = self.position
            while pos < length and (text[pos].isspace() or text[pos] == ","):
                pos += 1
            if pos < length and text[pos] == "#":
                newline = text.find("\n", pos)
                self.position = length if newline < 0 else newline
                continue
            self.position = pos
            if pos >= length:
                result.append(_Token(_EOF, "", pos))
                return result
            char = text[pos]
            if char in "()":
                result.append(_Token(char, char, pos))
                self.position = pos + 1
            elif char in "'\"":
                result.append(_Token(_STRING, self._read_string(char), pos))
            else:
                match = BAREWORD_PATTERN.match(text, pos)
                result.append(_Token(_WORD, match.group(0), pos))
                self.position = match.end()

    def _read_string(self, quote: str) -> str:
        text = self.text
        start = self.position
        pos = start + 1
        parts = []
        while True:
            end = text.find(quote, pos)
            if end < 0:
                raise ConfigSyntaxError("Unterminated string", start, text)
            parts.append(text[pos:end])
            if text.startswith(quote, end + 1):
                parts.append(quote)
                pos = end + 2
                continue
            self.position = end + 1
            return _unescape("".join(parts))


def _unescape(raw: str) -> str:
    return _ESCAPE_PATTERN.sub(lambda m: "\n" if m.group(1) == "n" else "%", raw)


def _escape(value: str) -> str:
    return value.replace("%", "%%").replace("\n", "%n").replace("'", "''")


class ConfigParser:
    """Recursive descent parser for configuration text."""

    def __init__(self, text: str):
        self.text = text
        self._tokens = _Tokenizer(text).tokens()
        self._index = 0

    def parse(self, name: str = "") -> ConfigNode:
        root = ConfigNode.section(name)
        root.children = self._parse_items(nested=False)
        return root

    def _peek(self) -> _Token:
        return self._tokens[self._index]

    def _next(self) -> _Token:
        token = self._tokens[self._index]
        self._index += 1
        return token

    def _parse_items(self, nested: bool) -> list[ConfigNode]:
        items = []
        while True:
            token = self._next()
            if token.kind == _EOF:
                if nested:
                    raise ConfigSyntaxError("Missing ')'", token.position, self.text)
                return items
            if token.kind == _CLOSE:
                if not nested:
                    raise ConfigSyntaxError("Unbalanced ')'", token.position, self.text)
                return items
            if token.kind == _OPEN:
                items.append(ConfigNode(name="", children=self._parse_items(nested=True)))
            elif token.kind == _STRING:
                items.append(ConfigNode.scalar("", token.text))
            else:
                items.append(self._parse_keyed(token))

    def _parse_keyed(self, key: _Token) -> ConfigNode:
        following = self._next()
        if following.kind == _OPEN:
            return ConfigNode(name=key.text, children=self._parse_items(nested=True))
        if following.kind in (_STRING, _WORD):
            return ConfigNode.scalar(key.text, following.text)
        raise ConfigSyntaxError(
            f"Key '{key.text}' must be followed by a value or '('", following.position, self.text
        )


def parse_config(text: str, name: str = "") -> ConfigNode:
    """
    Parse configuration text.

    Params:
        text: Text in configuration grammar
        name: Name of the returned container section

    Returns:
        Section `name` whose children are the top-level items of `text`

    Raises:
        ConfigSyntaxError: If the text is malformed
    """
    return ConfigParser(text).parse(name)


def serialize(node: ConfigNode, pretty: bool = False) -> str:
    """Render one node in configuration grammar; inverse of `parse_config`."""
    return _render(node, 0 if pretty else None)


def _render(node: ConfigNode, indent: int | None) -> str:
    if node.name and not BAREWORD_PATTERN.fullmatch(node.name):
        raise ValueError(f"Node name {node.name!r} cannot be written as a key")
    if node.value is not None:
        quoted = f"'{_escape(node.value)}'"
        return f"{node.name} {quoted}" if node.name else quoted

    if indent is None or not any(not child.is_scalar for child in node.children):
        inner = " ".join(_render(child, None) for child in node.children)
        return f"{node.name}({inner})"

    pad = "  " * (indent + 1)
    lines = [f"{pad}{_render(child, indent + 1)}" for child in node.children]
    return f"{node.name}(\n" + "\n".join(lines) + "\n" + "  " * indent + ")"
