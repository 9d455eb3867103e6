"""Format-preserving model of an OpenSSH client config file.

The document keeps every input line. Lines are only re-rendered when their
value changes, so ``serialize(parse(data)) == data`` for any document that
was not modified. Comments, blank lines, global directives, ``Match`` blocks
and directives sshdeck does not understand are carried through verbatim.
"""

from __future__ import annotations

import logging
import re
import shlex
from typing import Iterable, List, Optional, Tuple, Union

from .errors import ParseError, ValidationError
from .models import DEFAULT_PORT, MAX_PORT, MIN_PORT, Server, is_wildcard_pattern

logger = logging.getLogger(__name__)

INDENT = "    "

CANONICAL_KEYS = {
    "hostname": "HostName",
    "user": "User",
    "port": "Port",
    "identityfile": "IdentityFile",
}

_DIRECTIVE_RE = re.compile(
    r"^(?P<indent>[ \t]*)(?P<key>[^\s=]+)(?P<sep>[ \t]*=[ \t]*|[ \t]+|)(?P<rest>.*)$"
)


def canonical_key(key: str) -> str:
    return CANONICAL_KEYS.get(key.lower(), key)


def quote_value(value: str) -> str:
    """Quote *value* if ssh would otherwise split it."""
    if not value:
        return '""'
    if any(c.isspace() for c in value) or '#' in value:
        return f'"{value}"'
    return value


def unquote_value(raw: str) -> str:
    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in ('"', "'"):
        return raw[1:-1]
    return raw


def _split_newline(line: str):
    if line.endswith("\r\n"):
        return line[:-2], "\r\n"
    if line.endswith("\n"):
        return line[:-1], "\n"
    return line, ""


def _split_comment(rest: str):
    """Split ``rest`` into value text and an end-of-line comment.

    A ``#`` only starts a comment outside quotes and after whitespace.
    """
    quote = None
    for idx, char in enumerate(rest):
        if quote:
            if char == quote:
                quote = None
        elif char in ('"', "'"):
            quote = char
        elif char == '#' and idx > 0 and rest[idx - 1].isspace():
            return rest[:idx], rest[idx:]
    return rest, ""


class RawLine:
    """A comment, blank line, or anything else kept byte-for-byte."""

    def __init__(self, text: str):
        self.text = text

    @property
    def is_blank(self) -> bool:
        return not self.text.strip()

    @property
    def newline(self) -> str:
        return _split_newline(self.text)[1]

    def ensure_newline(self, newline: str) -> None:
        if not self.newline:
            self.text += newline

    def render(self) -> str:
        return self.text

    def __repr__(self):
        return f"RawLine({self.text!r})"


class Directive:
    """A ``Key value`` line with its original layout."""

    def __init__(
        self,
        key: str,
        raw_value: str,
        *,
        indent: str = INDENT,
        separator: str = " ",
        trailing: str = "",
        newline: str = "\n",
        original: Optional[str] = None,
    ):
        self.key = key
        self.raw_value = raw_value
        self.indent = indent
        self.separator = separator
        self.trailing = trailing
        self.newline = newline
        self._original = original

    @classmethod
    def parse(cls, line: str) -> Optional["Directive"]:
        content, newline = _split_newline(line)
        stripped = content.strip()
        if not stripped or stripped.startswith('#'):
            return None
        match = _DIRECTIVE_RE.match(content)
        if not match:
            return None
        value_text, comment = _split_comment(match.group("rest"))
        raw_value = value_text.rstrip()
        trailing = value_text[len(raw_value):] + comment
        return cls(
            match.group("key"),
            raw_value,
            indent=match.group("indent"),
            separator=match.group("sep"),
            trailing=trailing,
            newline=newline,
            original=line,
        )

    @property
    def name(self) -> str:
        """Lower-cased key, for case-insensitive comparisons."""
        return self.key.lower()

    @property
    def value(self) -> str:
        return unquote_value(self.raw_value)

    def set_raw_value(self, raw_value: str) -> None:
        if raw_value == self.raw_value:
            return
        self.raw_value = raw_value
        if not self.separator:
            self.separator = " "
        self._original = None

    def set_value(self, value: str) -> None:
        self.set_raw_value(quote_value(value))

    def ensure_newline(self, newline: str) -> None:
        if not self.newline:
            self.newline = newline
            self._original = None

    def render(self) -> str:
        if self._original is not None:
            return self._original
        return f"{self.indent}{self.key}{self.separator}{self.raw_value}{self.trailing}{self.newline}"

    def __repr__(self):
        return f"Directive({self.key!r}, {self.raw_value!r})"


Node = Union[Directive, RawLine]


class HostBlock:
    """A ``Host`` or ``Match`` header and the lines up to the next header."""

    def __init__(self, header: Directive, nodes: Optional[List[Node]] = None, newline: str = "\n"):
        self.header = header
        self.nodes: List[Node] = list(nodes or [])
        self.newline = newline
        self.patterns: List[str] = []
        if not self.is_match:
            self.patterns = self._parse_patterns(header.raw_value)

    @staticmethod
    def _parse_patterns(raw: str, line: Optional[int] = None) -> List[str]:
        try:
            tokens = shlex.split(raw)
        except ValueError as exc:
            raise ParseError(f"cannot parse Host patterns {raw!r}: {exc}", line) from None
        if not tokens:
            raise ParseError("Host line has no patterns", line)
        return tokens

    @classmethod
    def new(cls, alias: str, newline: str = "\n") -> "HostBlock":
        header = Directive("Host", quote_value(alias), indent="", newline=newline)
        return cls(header, newline=newline)

    @property
    def is_match(self) -> bool:
        return self.header.name == "match"

    @property
    def concrete_patterns(self) -> List[str]:
        return [p for p in self.patterns if p and not is_wildcard_pattern(p)]

    @property
    def alias(self) -> Optional[str]:
        concrete = self.concrete_patterns
        return concrete[0] if concrete else None

    def has_pattern(self, alias: str) -> bool:
        return not self.is_match and alias in self.patterns

    def set_patterns(self, patterns: Iterable[str]) -> None:
        patterns = list(patterns)
        if not patterns:
            raise ValidationError("a Host block needs at least one pattern")
        raw = " ".join(quote_value(p) for p in patterns)
        # The header must read back as the same patterns or the saved file is unparsable
        try:
            parsed = self._parse_patterns(raw)
        except ParseError as exc:
            raise ValidationError(f"invalid Host patterns {raw!r}: {exc}") from None
        if parsed != patterns:
            raise ValidationError(f"Host patterns {patterns!r} cannot be written unambiguously")
        self.patterns = patterns
        self.header.set_raw_value(raw)

    def rename_pattern(self, old: str, new: str) -> bool:
        if old not in self.patterns:
            return False
        self.set_patterns([new if p == old else p for p in self.patterns])
        return True

    def directives(self, key: Optional[str] = None) -> List[Directive]:
        wanted = key.lower() if key else None
        return [
            node for node in self.nodes
            if isinstance(node, Directive) and (wanted is None or node.name == wanted)
        ]

    def get(self, key: str) -> Optional[str]:
        """Return the first value for *key*, like ssh's first-obtained rule."""
        found = self.directives(key)
        return found[0].value if found else None

    def _insert_index(self) -> int:
        """Index after the last directive, ahead of trailing comments/blanks."""
        for idx in range(len(self.nodes) - 1, -1, -1):
            if isinstance(self.nodes[idx], Directive):
                return idx + 1
        return 0

    def add_directive(self, key: str, value: str) -> Directive:
        idx = self._insert_index()
        previous = self.nodes[idx - 1] if idx > 0 else self.header
        previous.ensure_newline(self.newline)
        node = Directive(canonical_key(key), quote_value(value), indent=INDENT, newline=self.newline)
        self.nodes.insert(idx, node)
        return node

    def remove_directives(self, key: str) -> int:
        wanted = key.lower()
        before = len(self.nodes)
        self.nodes = [
            node for node in self.nodes
            if not (isinstance(node, Directive) and node.name == wanted)
        ]
        return before - len(self.nodes)

    def render(self) -> str:
        return self.header.render() + "".join(node.render() for node in self.nodes)

    def to_server(self) -> Optional[Server]:
        """Derive a :class:`Server` or ``None`` for wildcard-only/Match blocks."""
        if self.is_match:
            return None
        aliases = self.concrete_patterns
        if not aliases:
            return None
        port = DEFAULT_PORT
        raw_port = self.get("port")
        if raw_port:
            try:
                value = int(raw_port)
            except ValueError:
                value = None
            if value is not None and MIN_PORT <= value <= MAX_PORT:
                port = value
            else:
                logger.warning("Ignoring invalid Port %r for host %s", raw_port, aliases[0])
        return Server(
            alias=aliases[0],
            aliases=list(aliases),
            host=self.get("hostname") or "",
            user=self.get("user") or "",
            port=port,
            identity_files=[d.value for d in self.directives("identityfile") if d.value],
        )

    def __repr__(self):
        return f"HostBlock({self.header.key} {self.patterns!r}, {len(self.nodes)} nodes)"


class SSHConfigDocument:
    """Global preamble followed by ``Host``/``Match`` blocks in file order."""

    def __init__(self, preamble: Optional[List[Node]] = None, blocks: Optional[List[HostBlock]] = None,
                 newline: str = "\n"):
        self.preamble: List[Node] = list(preamble or [])
        self.blocks: List[HostBlock] = list(blocks or [])
        self.newline = newline

    # ------------------------------------------------------------------ queries
    def host_blocks(self) -> List[HostBlock]:
        return [block for block in self.blocks if not block.is_match]

    def find_block(self, alias: str) -> Optional[HostBlock]:
        for block in self.blocks:
            if block.has_pattern(alias):
                return block
        return None

    def servers(self) -> List[Server]:
        """Servers in document order; later duplicates of an alias are skipped."""
        result: List[Server] = []
        seen = set()
        for block in self.blocks:
            server = block.to_server()
            if server is None:
                continue
            if server.alias in seen:
                logger.debug("Skipping duplicate Host block for %s", server.alias)
                continue
            seen.add(server.alias)
            result.append(server)
        return result

    # ---------------------------------------------------------------- mutations
    def append_block(self, block: HostBlock) -> None:
        container = self.blocks[-1].nodes if self.blocks else self.preamble
        last = container[-1] if container else (self.blocks[-1].header if self.blocks else None)
        if last is not None:
            last.ensure_newline(self.newline)
            if not (isinstance(last, RawLine) and last.is_blank):
                container.append(RawLine(self.newline))
        block.newline = self.newline
        block.header.newline = self.newline
        self.blocks.append(block)

    def remove_block(self, alias: str) -> bool:
        block = self.find_block(alias)
        if block is None:
            return False
        self.blocks.remove(block)
        return True

    def upsert_directive(self, block: HostBlock, key: str, value: str) -> Directive:
        """Update the first *key* directive in place, or append a new one."""
        existing = block.directives(key)
        if existing:
            if existing[0].value != value:
                existing[0].set_value(value)
            return existing[0]
        return block.add_directive(key, value)

    def replace_directive_family(self, block: HostBlock, key: str, values: Iterable[str]) -> None:
        """Drop every *key* directive and append *values* in order."""
        block.remove_directives(key)
        for value in values:
            if value:
                block.add_directive(key, value)

    def rename_pattern(self, block: HostBlock, old: str, new: str) -> bool:
        return block.rename_pattern(old, new)

    def render(self) -> str:
        return "".join(node.render() for node in self.preamble) + "".join(
            block.render() for block in self.blocks
        )


def new_host_block(alias: str, directives: Iterable[Tuple[str, str]] = (), newline: str = "\n") -> HostBlock:
    """Build a ``Host`` block for *alias*, skipping directives with empty values."""
    block = HostBlock.new(alias, newline)
    for key, value in directives:
        if value:
            block.add_directive(key, value)
    return block


def _detect_newline(text: str) -> str:
    idx = text.find("\n")
    if idx > 0 and text[idx - 1] == "\r":
        return "\r\n"
    return "\n"


def _split_lines(text: str) -> List[str]:
    pieces = text.split("\n")
    lines = [piece + "\n" for piece in pieces[:-1]]
    if pieces[-1]:
        lines.append(pieces[-1])
    return lines


def parse(data: bytes) -> SSHConfigDocument:
    """Parse SSH config bytes into a :class:`SSHConfigDocument`."""
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as exc:
        line = data[:exc.start].count(b"\n") + 1
        raise ParseError(f"config is not valid UTF-8: {exc.reason}", line) from None

    newline = _detect_newline(text)
    doc = SSHConfigDocument(newline=newline)
    current: Optional[HostBlock] = None

    for lineno, line in enumerate(_split_lines(text), 1):
        directive = Directive.parse(line)
        if directive is not None and directive.name in ("host", "match"):
            if directive.name == "host":
                HostBlock._parse_patterns(directive.raw_value, lineno)
            current = HostBlock(directive, newline=newline)
            doc.blocks.append(current)
            continue
        node: Node = directive if directive is not None else RawLine(line)
        if current is None:
            doc.preamble.append(node)
        else:
            current.nodes.append(node)
    return doc


def serialize(doc: SSHConfigDocument) -> bytes:
    return doc.render().encode("utf-8")


__all__ = [
    "CANONICAL_KEYS",
    "Directive",
    "HostBlock",
    "RawLine",
    "SSHConfigDocument",
    "canonical_key",
    "new_host_block",
    "parse",
    "quote_value",
    "serialize",
    "unquote_value",
]
