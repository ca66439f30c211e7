"""Tokenizer for the opam file format."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, List

from opam_resolver.errors import invalid_metadata


class TokenType(Enum):
    STRING = "string"
    IDENT = "ident"
    BOOL = "bool"
    INT = "int"
    LBRACKET = "["
    RBRACKET = "]"
    LBRACE = "{"
    RBRACE = "}"
    LPAREN = "("
    RPAREN = ")"
    COLON = ":"
    RELOP = "relop"
    ENVOP = "envop"
    AND = "&"
    OR = "|"
    NOT = "!"
    DEFINED = "?"
    EOF = "eof"


@dataclass
class Token:
    type: TokenType
    value: Any
    line: int


_IDENT_RE = re.compile(r"[A-Za-z0-9_][A-Za-z0-9_+\-]*(?::[A-Za-z0-9_][A-Za-z0-9_+\-]*)*")
_INT_RE = re.compile(r"-?[0-9]+$")
_TWO_CHAR_OPS = {
    "!=": TokenType.RELOP,
    "<=": TokenType.RELOP,
    ">=": TokenType.RELOP,
    "+=": TokenType.ENVOP,
    "=+": TokenType.ENVOP,
    ":=": TokenType.ENVOP,
    "=:": TokenType.ENVOP,
}
_ONE_CHAR = {
    "[": TokenType.LBRACKET,
    "]": TokenType.RBRACKET,
    "{": TokenType.LBRACE,
    "}": TokenType.RBRACE,
    "(": TokenType.LPAREN,
    ")": TokenType.RPAREN,
    ":": TokenType.COLON,
    "=": TokenType.RELOP,
    "<": TokenType.RELOP,
    ">": TokenType.RELOP,
    "~": TokenType.RELOP,
    "&": TokenType.AND,
    "|": TokenType.OR,
    "!": TokenType.NOT,
    "?": TokenType.DEFINED,
}
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "b": "\b", "\\": "\\", '"': '"', "'": "'", " ": " "}


class Lexer:
    """Turns opam source text into a token list."""

    def __init__(self, text: str, filename: str = "<opam>") -> None:
        self.text = text
        self.filename = filename
        self.pos = 0
        self.line = 1

    def error(self, detail: str):
        return invalid_metadata(self.filename, f"line {self.line}: {detail}")

    def tokenize(self) -> List[Token]:
        tokens: List[Token] = []
        while True:
            self._skip_blank()
            if self.pos >= len(self.text):
                tokens.append(Token(TokenType.EOF, None, self.line))
                return tokens
            tokens.append(self._next())

    def _skip_blank(self) -> None:
        text = self.text
        while self.pos < len(text):
            ch = text[self.pos]
            if ch == "\n":
                self.line += 1
                self.pos += 1
            elif ch in " \t\r":
                self.pos += 1
            elif ch == "#":
                while self.pos < len(text) and text[self.pos] != "\n":
                    self.pos += 1
            elif text.startswith("(*", self.pos):
                self._skip_block_comment()
            else:
                return

    def _skip_block_comment(self) -> None:
        depth = 0
        text = self.text
        while self.pos < len(text):
            if text.startswith("(*", self.pos):
                depth += 1
                self.pos += 2
            elif text.startswith("*)", self.pos):
                depth -= 1
                self.pos += 2
                if depth == 0:
                    return
            else:
                if text[self.pos] == "\n":
                    self.line += 1
                self.pos += 1
        raise self.error("unterminated comment")

    def _next(self) -> Token:
        text = self.text
        line = self.line
        if text.startswith('"""', self.pos):
            return Token(TokenType.STRING, self._triple_string(), line)
        ch = text[self.pos]
        if ch == '"':
            return Token(TokenType.STRING, self._string(), line)

        two = text[self.pos:self.pos + 2]
        if two in _TWO_CHAR_OPS:
            self.pos += 2
            return Token(_TWO_CHAR_OPS[two], two, line)

        m = _IDENT_RE.match(text, self.pos)
        if m:
            word = m.group(0)
            self.pos = m.end()
            if word in ("true", "false"):
                return Token(TokenType.BOOL, word == "true", line)
            if _INT_RE.match(word):
                return Token(TokenType.INT, int(word), line)
            return Token(TokenType.IDENT, word, line)

        if ch in _ONE_CHAR:
            self.pos += 1
            return Token(_ONE_CHAR[ch], ch, line)
        raise self.error(f"unexpected character {ch!r}")

    def _string(self) -> str:
        text = self.text
        self.pos += 1
        out = []
        while self.pos < len(text):
            ch = text[self.pos]
            if ch == '"':
                self.pos += 1
                return "".join(out)
            if ch == "\\" and self.pos + 1 < len(text):
                nxt = text[self.pos + 1]
                if nxt == "\n":
                    # line continuation: drop the newline and leading blanks
                    self.line += 1
                    self.pos += 2
                    while self.pos < len(text) and text[self.pos] in " \t":
                        self.pos += 1
                    continue
                out.append(_ESCAPES.get(nxt, "\\" + nxt))
                self.pos += 2
                continue
            if ch == "\n":
                self.line += 1
            out.append(ch)
            self.pos += 1
        raise self.error("unterminated string")

    def _triple_string(self) -> str:
        start = self.pos + 3
        end = self.text.find('"""', start)
        if end == -1:
            raise self.error("unterminated string")
        value = self.text[start:end]
        self.line += value.count("\n")
        self.pos = end + 3
        return value


def tokenize(text: str, filename: str = "<opam>") -> List[Token]:
    return Lexer(text, filename).tokenize()
