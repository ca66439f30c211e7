"""Recursive-descent parser for opam files.

Produces plain Python values where possible (``str``, ``bool``, ``int``,
``list``) and small AST nodes for everything that carries operators.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from opam_resolver.errors import invalid_metadata
from opam_resolver.opamfile.lexer import Token, TokenType, tokenize


@dataclass
class Ident:
    name: str


@dataclass
class Option:
    """``value {filters}``"""

    value: Any
    filters: List[Any]


@dataclass
class Prefix:
    """Prefix constraint such as ``>= "1.0"``."""

    op: str
    value: Any


@dataclass
class Relop:
    op: str
    left: Any
    right: Any


@dataclass
class EnvUpdate:
    """``VAR += "value"`` style environment update."""

    op: str
    left: Any
    right: Any


@dataclass
class Logop:
    op: str  # "&" or "|"
    left: Any
    right: Any


@dataclass
class Not:
    value: Any


@dataclass
class Defined:
    value: Any


@dataclass
class Group:
    values: List[Any]


@dataclass
class Section:
    kind: str
    label: Optional[str]
    fields: Dict[str, Any] = field(default_factory=dict)
    sections: List["Section"] = field(default_factory=list)


@dataclass
class OpamFile:
    fields: Dict[str, Any] = field(default_factory=dict)
    sections: List[Section] = field(default_factory=list)

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)

    def section(self, kind: str) -> Optional[Section]:
        for section in self.sections:
            if section.kind == kind:
                return section
        return None


_VALUE_START = {
    TokenType.STRING,
    TokenType.IDENT,
    TokenType.BOOL,
    TokenType.INT,
    TokenType.LBRACKET,
    TokenType.LPAREN,
    TokenType.RELOP,
    TokenType.NOT,
    TokenType.DEFINED,
}


class Parser:
    """Parse a token stream into an ``OpamFile``."""

    def __init__(self, tokens: List[Token], filename: str = "<opam>") -> None:
        self.tokens = tokens
        self.filename = filename
        self.index = 0

    @property
    def current(self) -> Token:
        return self.tokens[self.index]

    def peek(self, offset: int = 1) -> Token:
        idx = min(self.index + offset, len(self.tokens) - 1)
        return self.tokens[idx]

    def advance(self) -> Token:
        token = self.current
        if token.type is not TokenType.EOF:
            self.index += 1
        return token

    def expect(self, type_: TokenType) -> Token:
        token = self.current
        if token.type is not type_:
            raise self.error(f"expected {type_.value}, got {token.value!r}")
        return self.advance()

    def error(self, detail: str):
        return invalid_metadata(self.filename, f"line {self.current.line}: {detail}")

    def parse_file(self) -> OpamFile:
        result = OpamFile()
        self._parse_items(result.fields, result.sections, TokenType.EOF)
        return result

    def _parse_items(self, fields: Dict[str, Any], sections: List[Section], end: TokenType) -> None:
        while self.current.type is not end:
            name = self.expect(TokenType.IDENT).value
            if self.current.type is TokenType.COLON:
                self.advance()
                fields[name] = self.parse_value()
                continue
            label = None
            if self.current.type is TokenType.STRING:
                label = self.advance().value
            if self.current.type is not TokenType.LBRACE:
                raise self.error(f"expected ':' or section body after {name!r}")
            self.advance()
            section = Section(kind=name, label=label)
            self._parse_items(section.fields, section.sections, TokenType.RBRACE)
            self.expect(TokenType.RBRACE)
            sections.append(section)

    def parse_value(self) -> Any:
        return self._parse_or()

    def _parse_or(self) -> Any:
        left = self._parse_and()
        while self.current.type is TokenType.OR:
            self.advance()
            left = Logop("|", left, self._parse_and())
        return left

    def _parse_and(self) -> Any:
        left = self._parse_rel()
        while self.current.type is TokenType.AND:
            self.advance()
            left = Logop("&", left, self._parse_rel())
        return left

    def _parse_rel(self) -> Any:
        left = self._parse_unary()
        if self.current.type is TokenType.RELOP:
            op = self.advance().value
            return Relop(op, left, self._parse_unary())
        if self.current.type is TokenType.ENVOP:
            op = self.advance().value
            return EnvUpdate(op, left, self._parse_unary())
        return left

    def _parse_unary(self) -> Any:
        token = self.current
        if token.type is TokenType.RELOP:
            self.advance()
            return Prefix(token.value, self._parse_unary())
        if token.type is TokenType.NOT:
            self.advance()
            return Not(self._parse_unary())
        if token.type is TokenType.DEFINED:
            self.advance()
            return Defined(self._parse_unary())
        return self._parse_postfix()

    def _parse_postfix(self) -> Any:
        value = self._parse_primary()
        if self.current.type is TokenType.LBRACE:
            self.advance()
            filters = self._parse_sequence(TokenType.RBRACE)
            value = Option(value, filters)
        return value

    def _parse_primary(self) -> Any:
        token = self.current
        if token.type is TokenType.STRING or token.type is TokenType.BOOL or token.type is TokenType.INT:
            self.advance()
            return token.value
        if token.type is TokenType.IDENT:
            self.advance()
            return Ident(token.value)
        if token.type is TokenType.LBRACKET:
            self.advance()
            return self._parse_sequence(TokenType.RBRACKET)
        if token.type is TokenType.LPAREN:
            self.advance()
            return Group(self._parse_sequence(TokenType.RPAREN))
        raise self.error(f"unexpected token {token.value!r}")

    def _parse_sequence(self, end: TokenType) -> List[Any]:
        values = []
        while self.current.type is not end:
            if self.current.type not in _VALUE_START:
                raise self.error(f"unexpected token {self.current.value!r}")
            values.append(self.parse_value())
        self.expect(end)
        return values


def parse_opam(text: str, filename: str = "<opam>") -> OpamFile:
    """Parse opam file text.

    Raises:
        OpamResolverError: INVALID_METADATA on any syntax error.
    """
    return Parser(tokenize(text, filename), filename).parse_file()
