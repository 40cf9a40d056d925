"""Diagram parser for Stackwright.

Parses the subset of PlantUML component-diagram notation needed to describe
components and their relations into a RawSystem. Parsing is single pass:
components are collected as they appear, relation endpoints are kept as
written and mapped through the alias table once the whole text has been read,
so relations may reference components declared further down.

Supported notation:

    @startuml
    component "Catalog" <<spring-boot-service>> as catalog {
      entityCount = 10
    }
    database "Catalog DB" <<postgres>>
    [Gateway] <<service>>

    [Gateway] --> catalog : http/rest fetch products
    catalog ..> [Catalog DB] : jdbc
    @enduml
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

from stackwright.errors import ParseError
from stackwright.logging import get_logger
from stackwright.model.raw import PropertyValue, RawComponent, RawRelation, RawSystem

logger = get_logger(__name__)

COMPONENT_KEYWORDS = frozenset(
    {"component", "database", "queue", "node", "rectangle", "interface", "artifact", "storage"}
)
# Keywords that imply a kind when the declaration carries no stereotype
KEYWORD_KINDS = {"database": "database", "queue": "queue"}
GROUP_KEYWORDS = frozenset({"package", "frame", "folder", "cloud"})
IGNORED_DIRECTIVES = (
    "title",
    "skinparam",
    "hide",
    "show",
    "scale",
    "caption",
    "header",
    "footer",
    "left to right direction",
    "top to bottom direction",
    "!",
)

_WORD = re.compile(r"[A-Za-z0-9_]+(?:[.\-][A-Za-z0-9_]+)*")
_ARROW = re.compile(r"<?[-.]+(?:(?:up|down|left|right)[-.]+)?>?")
_COLOR = re.compile(r"#[\w]+")
_PROPERTY = re.compile(r"^(?P<key>[A-Za-z_][\w.\-]*)\s*[=:]\s*(?P<value>.*?)\s*;?$")
_INT = re.compile(r"^[+-]?\d+$")
_FLOAT = re.compile(r"^[+-]?(\d+\.\d*|\.\d+)([eE][+-]?\d+)?$")


def to_id(name: str) -> str:
    """Normalize a display name to a component id.

    Lower-cases the name and removes all whitespace, so "Catalog DB" and
    "catalogdb" identify the same component.
    """
    return re.sub(r"\s+", "", name).lower()


def to_protocol(text: str) -> str:
    """Normalize a relation protocol label ("HTTP/REST" -> "http-rest")."""
    return text.strip().replace("/", "-").lower()


def parse_value(raw: str) -> PropertyValue:
    """Convert a property value literal to int, float, bool or string."""
    value = raw.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    lowered = value.lower()
    if lowered in ("true", "yes", "on"):
        return True
    if lowered in ("false", "no", "off"):
        return False
    if _INT.match(value):
        return int(value)
    if _FLOAT.match(value):
        return float(value)
    return value


@dataclass
class Token:
    """A lexical token of one diagram line."""

    kind: str
    value: str


@dataclass
class _PendingRelation:
    source: Token
    target: Token
    protocol: str
    label: str | None
    line: int


@dataclass
class _ParseState:
    components: list[RawComponent] = field(default_factory=list)
    declared_at: dict[str, int] = field(default_factory=dict)
    aliases: dict[str, str] = field(default_factory=dict)
    relations: list[_PendingRelation] = field(default_factory=list)
    # Open brace stack: ("group" | "properties", line number)
    blocks: list[tuple[str, int]] = field(default_factory=list)
    open_component: dict | None = None
    skip_until: str | None = None
    skip_started: int = 0


class DiagramParser:
    """Parser for component diagrams.

    The parser is stateless between calls; every call to ``parse`` builds a
    fresh RawSystem.
    """

    def tokenize(self, text: str, line_no: int) -> list[Token]:
        """Split one diagram line into tokens.

        Token kinds: ``quoted``, ``bracket``, ``stereotype``, ``arrow``,
        ``label`` (everything after a colon), ``lbrace``, ``rbrace``, ``word``.

        Raises:
            ParseError: On unterminated names or stereotypes and unknown delimiters
        """
        tokens: list[Token] = []
        pos = 0
        length = len(text)

        while pos < length:
            char = text[pos]

            if char.isspace():
                pos += 1
                continue

            if char == '"':
                end = text.find('"', pos + 1)
                if end == -1:
                    raise ParseError(line_no, "unterminated declaration: missing closing '\"'")
                tokens.append(Token("quoted", text[pos + 1 : end]))
                pos = end + 1
                continue

            if char == "[":
                end = text.find("]", pos + 1)
                if end == -1:
                    raise ParseError(line_no, "unterminated declaration: missing closing ']'")
                tokens.append(Token("bracket", text[pos + 1 : end]))
                pos = end + 1
                continue

            if text.startswith("<<", pos):
                end = text.find(">>", pos + 2)
                if end == -1:
                    raise ParseError(line_no, "unterminated stereotype: missing closing '>>'")
                tokens.append(Token("stereotype", text[pos + 2 : end]))
                pos = end + 2
                continue

            arrow = _ARROW.match(text, pos)
            if arrow and ("<" in arrow.group() or ">" in arrow.group()) and len(arrow.group()) > 1:
                tokens.append(Token("arrow", arrow.group()))
                pos = arrow.end()
                continue

            if char in "<>":
                raise ParseError(line_no, f"unknown stereotype delimiter '{char}'")

            if char == ":":
                tokens.append(Token("label", text[pos + 1 :].strip()))
                break

            if char == "{":
                tokens.append(Token("lbrace", char))
                pos += 1
                continue

            if char == "}":
                tokens.append(Token("rbrace", char))
                pos += 1
                continue

            color = _COLOR.match(text, pos)
            if color:
                # Colors are presentation only
                pos = color.end()
                continue

            word = _WORD.match(text, pos)
            if word:
                tokens.append(Token("word", word.group()))
                pos = word.end()
                continue

            if arrow and arrow.group():
                raise ParseError(line_no, f"relation '{arrow.group()}' must be directed")

            raise ParseError(line_no, f"unexpected character '{char}'")

        return tokens

    def parse(self, source_text: str, name: str = "diagram") -> RawSystem:
        """Parse diagram source text into a RawSystem.

        Args:
            source_text: Diagram text
            name: Name of the resulting system (usually the diagram identifier)

        Returns:
            RawSystem with components in declaration order

        Raises:
            ParseError: On the first malformed declaration
        """
        logger.info("parsing_diagram", name=name, content_length=len(source_text))

        state = _ParseState()

        for line_no, raw_line in enumerate(source_text.splitlines(), start=1):
            line = raw_line.strip()

            if state.skip_until is not None:
                if self._ends_skip(line, state.skip_until):
                    state.skip_until = None
                continue

            if state.open_component is not None:
                self._parse_property_line(line, line_no, state)
                continue

            if not line or line.startswith("'"):
                continue

            if line.startswith("@startuml"):
                continue
            if line.startswith("@enduml"):
                break

            if line.startswith("/'"):
                if "'/" not in line[2:]:
                    state.skip_until = "'/"
                    state.skip_started = line_no
                continue

            lowered = line.lower()
            if lowered.startswith("note ") or lowered == "note":
                if ":" not in line:
                    state.skip_until = "end note"
                    state.skip_started = line_no
                continue
            if lowered == "legend" or lowered.startswith("legend "):
                state.skip_until = "endlegend"
                state.skip_started = line_no
                continue
            if lowered.startswith(IGNORED_DIRECTIVES):
                continue

            self._parse_statement(self.tokenize(line, line_no), line_no, state)

        self._check_terminated(state)

        components = tuple(state.components)
        relations = tuple(self._resolve_relation(r, state) for r in state.relations)

        logger.info(
            "diagram_parsed",
            name=name,
            components=len(components),
            relations=len(relations),
        )

        return RawSystem(name=name, components=components, relations=relations)

    def parse_file(self, file_path: Path) -> RawSystem:
        """Parse a diagram file, naming the system after the file stem.

        Raises:
            FileNotFoundError: If the file does not exist
            ParseError: On malformed content
        """
        logger.info("parsing_file", file_path=str(file_path))

        if not file_path.exists():
            logger.error("file_not_found", file_path=str(file_path))
            raise FileNotFoundError(f"Diagram file not found: {file_path}")

        return self.parse(file_path.read_text(encoding="utf-8"), name=to_id(file_path.stem))

    @staticmethod
    def _ends_skip(line: str, marker: str) -> bool:
        if marker == "'/":
            return "'/" in line
        return line.lower().replace(" ", "") == marker.replace(" ", "")

    def _parse_statement(self, tokens: list[Token], line_no: int, state: _ParseState) -> None:
        if not tokens:
            return

        if len(tokens) == 1 and tokens[0].kind == "rbrace":
            if not state.blocks:
                raise ParseError(line_no, "unexpected '}'")
            state.blocks.pop()
            return

        if any(t.kind == "arrow" for t in tokens):
            self._parse_relation(tokens, line_no, state)
            return

        head = tokens[0]
        if head.kind == "word" and head.value.lower() in GROUP_KEYWORDS:
            if tokens[-1].kind == "lbrace":
                state.blocks.append(("group", line_no))
            return

        if head.kind == "bracket" or (
            head.kind == "word" and head.value.lower() in COMPONENT_KEYWORDS
        ):
            self._parse_component(tokens, line_no, state)
            return

        raise ParseError(line_no, f"unrecognized statement starting with '{head.value}'")

    def _parse_component(self, tokens: list[Token], line_no: int, state: _ParseState) -> None:
        keyword: str | None = None
        rest = list(tokens)
        if rest[0].kind == "word":
            keyword = rest.pop(0).value.lower()

        if not rest or rest[0].kind not in ("quoted", "bracket", "word"):
            raise ParseError(line_no, f"{keyword or 'component'} declaration without a name")

        display_name = rest.pop(0).value.strip()
        if not display_name:
            raise ParseError(line_no, "empty component name")

        alias: str | None = None
        stereotypes: list[str] = []
        opens_block = False

        while rest:
            token = rest.pop(0)
            if token.kind == "stereotype":
                stereotypes.append(token.value)
            elif token.kind == "word" and token.value.lower() == "as":
                if not rest or rest[0].kind not in ("word", "quoted", "bracket"):
                    raise ParseError(line_no, "'as' must be followed by an alias")
                alias = rest.pop(0).value
            elif token.kind == "lbrace" and not rest:
                opens_block = True
            else:
                raise ParseError(line_no, f"unexpected '{token.value}' in component declaration")

        kind = self._kind_from_stereotype(stereotypes[0]) if stereotypes else ""
        if not kind and keyword in KEYWORD_KINDS:
            kind = KEYWORD_KINDS[keyword]

        component_id = to_id(display_name)
        if component_id in state.declared_at:
            raise ParseError(
                line_no,
                f"duplicate component id '{component_id}' "
                f"(first declared on line {state.declared_at[component_id]})",
            )
        state.declared_at[component_id] = line_no

        if alias is not None:
            state.aliases[alias] = component_id

        pending = {"id": component_id, "name": display_name, "kind": kind, "line": line_no}
        if opens_block:
            state.open_component = {**pending, "properties": {}}
            state.blocks.append(("properties", line_no))
        else:
            state.components.append(RawComponent(**pending))

    @staticmethod
    def _kind_from_stereotype(value: str) -> str:
        # "(S,#FF0000) spring-boot-service" -> "spring-boot-service"
        text = re.sub(r"^\([^)]*\)", "", value.strip()).strip()
        return text.lower()

    def _parse_property_line(self, line: str, line_no: int, state: _ParseState) -> None:
        if not line or line.startswith("'"):
            return
        if line == "}":
            state.blocks.pop()
            state.components.append(RawComponent(**state.open_component))
            state.open_component = None
            return

        match = _PROPERTY.match(line)
        if not match:
            raise ParseError(line_no, f"malformed property '{line}', expected 'key = value'")
        state.open_component["properties"][match.group("key")] = parse_value(match.group("value"))

    def _parse_relation(self, tokens: list[Token], line_no: int, state: _ParseState) -> None:
        label_text = ""
        if tokens[-1].kind == "label":
            label_text = tokens.pop().value

        endpoint_kinds = ("quoted", "bracket", "word")
        if (
            len(tokens) != 3
            or tokens[0].kind not in endpoint_kinds
            or tokens[1].kind != "arrow"
            or tokens[2].kind not in endpoint_kinds
        ):
            raise ParseError(line_no, "malformed relation, expected 'A -> B : protocol'")

        left, arrow, right = tokens
        points_left = arrow.value.startswith("<")
        points_right = arrow.value.endswith(">")
        if points_left and points_right:
            raise ParseError(line_no, "bidirectional relations are not supported")

        source, target = (right, left) if points_left else (left, right)

        protocol = ""
        label: str | None = None
        if label_text:
            parts = label_text.split(None, 1)
            protocol = to_protocol(parts[0])
            if len(parts) > 1:
                label = parts[1].strip().strip('"') or None

        state.relations.append(_PendingRelation(source, target, protocol, label, line_no))

    @staticmethod
    def _resolve_relation(pending: _PendingRelation, state: _ParseState) -> RawRelation:
        def endpoint(token: Token) -> str:
            if token.kind == "word" and token.value in state.aliases:
                return state.aliases[token.value]
            return to_id(token.value)

        return RawRelation(
            source_id=endpoint(pending.source),
            target_id=endpoint(pending.target),
            protocol=pending.protocol,
            label=pending.label,
            line=pending.line,
        )

    @staticmethod
    def _check_terminated(state: _ParseState) -> None:
        if state.skip_until is not None:
            raise ParseError(
                state.skip_started, f"unterminated block, missing '{state.skip_until}'"
            )
        if state.open_component is not None:
            raise ParseError(
                state.open_component["line"],
                f"unterminated declaration: property block of '{state.open_component['name']}' "
                "is never closed",
            )
        if state.blocks:
            _, line_no = state.blocks[-1]
            raise ParseError(line_no, "unterminated declaration: group is never closed")


def parse(source_text: str, name: str = "diagram") -> RawSystem:
    """Parse diagram text with a default DiagramParser."""
    return DiagramParser().parse(source_text, name=name)
