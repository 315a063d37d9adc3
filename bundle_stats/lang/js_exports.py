"""JavaScript / TypeScript export scanning.

All functions are **pure** (string in → model out).  No subprocess
execution, no filesystem access.

The scanner is a small tokenizer plus a statement matcher for the
top-level ``export`` forms; it does not build a syntax tree.

Tokenizer
---------
Understands comments, string / template / regex literals, numbers,
identifiers and punctuators, and tracks bracket depth so only top-level
statements are inspected.  Whether ``/`` starts a regex is decided from
the previous token; a ``)`` closing an ``if`` / ``while`` / ``for`` head
and a ``}`` closing a block both start a new expression.  A candidate
regex that runs into a line break is re-read as division.

Outside TypeScript files, a ``<`` in expression position starts a JSX
element, consumed whole as one ``jsx`` token (embedded ``{...}``
expressions are lexed recursively).  Anything that does not scan as JSX
falls back to a plain ``<``.

Recognised exports
------------------
- ``export default ...``                        → ``default``
- ``export var|let|const`` (incl. destructuring)  → each bound name
- ``export function|function*|async function|class|enum|namespace``
- ``export { a, b as c, default } [from "x"]``
- ``export * from "x"`` / ``export * as ns from "x"`` → wildcard target

TypeScript type-only forms (``export type``, ``export interface``,
``export declare``, ``export { type T }``, ``export const enum``,
``export =``, ``export import``) contribute nothing.
"""

from __future__ import annotations

import re
from typing import NamedTuple

from bundle_stats.errors import ExportParseError
from bundle_stats.lang import ExportDetails

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_IDENT_PART = r"(?:[\w$\u0080-\uffff]|\\u[0-9a-fA-F]{4}|\\u\{[0-9a-fA-F]+\})"
_IDENT_RE = re.compile(
    r"(?:[A-Za-z_$\u0080-\uffff]|\\u[0-9a-fA-F]{4}|\\u\{[0-9a-fA-F]+\})"
    + _IDENT_PART + "*"
)
_NUMBER_RE = re.compile(
    r"0[xX][0-9a-fA-F_]+n?"
    r"|0[oO][0-7_]+n?"
    r"|0[bB][01_]+n?"
    r"|(?:\d[\d_]*(?:\.[\d_]*)?|\.\d[\d_]*)(?:[eE][+-]?\d[\d_]*)?n?"
)
_PUNCT_RE = re.compile(
    r">>>=|\.\.\.|===|!==|\*\*=|<<=|>>=|>>>|&&=|\|\|=|\?\?="
    r"|=>|==|!=|<=|>=|&&|\|\||\?\?|\?\.(?!\d)|\+\+|--|\+=|-=|\*=|/=|%=|&=|\|=|\^=|\*\*|<<|>>"
    r"|[{}()\[\];,<>+\-*/%&|^!~?:=.@]"
)
_ESCAPE_RE = re.compile(r"\\(?:\r\n|.)", re.DOTALL)
_SIMPLE_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "b": "\b", "f": "\f", "v": "\v", "0": "\0"}

_LINE_BREAKS = "\n\r\u2028\u2029"
_OPENERS = {"{": "}", "(": ")", "[": "]"}
_CLOSERS = frozenset("})]")
_TEMPLATE_SUB = "${"

# Keywords after which "/" starts a regex literal rather than a division.
_REGEX_AFTER = frozenset({
    "return", "typeof", "instanceof", "in", "of", "new", "delete", "void",
    "throw", "case", "do", "else", "yield", "await", "export", "default",
    "extends",
})

# Names after which "{" opens an object literal rather than a block.
_EXPRESSION_KEYWORDS = _REGEX_AFTER - {"else", "do", "export"}

# Keywords whose parenthesised head is followed by a statement.
_CONTROL_HEADS = frozenset({"if", "while", "for", "with"})

_JSX_NAME_RE = re.compile(r"[A-Za-z_$][\w$.:\-]*")
_NO_JSX_SUFFIXES = (".ts", ".mts", ".cts")

# A line starting with one of these ends an unterminated initializer.
_STATEMENT_KEYWORDS = frozenset({
    "export", "import", "const", "let", "var", "function", "class", "if",
    "for", "while", "do", "return", "switch", "try", "throw",
})

_TYPE_ONLY_STARTERS = frozenset({
    "type", "interface", "declare", "=", "import", "as", "module",
})


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------


class Token(NamedTuple):
    kind: str  # name | punct | string | template | number | regex | private | jsx
    value: str
    start: int
    depth: int
    newline_before: bool


def _unescape(raw: str) -> str:
    def replace(m: re.Match) -> str:
        ch = m.group(0)[1:]
        if ch in ("\n", "\r\n", "\r", "\u2028", "\u2029"):
            return ""
        return _SIMPLE_ESCAPES.get(ch, ch)

    return _ESCAPE_RE.sub(replace, raw)


class _Lexer:
    def __init__(
        self,
        code: str,
        filename: str,
        *,
        jsx: bool | None = None,
        embedded: bool = False,
    ) -> None:
        self.code = code
        self.filename = filename
        self.jsx = not filename.endswith(_NO_JSX_SUFFIXES) if jsx is None else jsx
        self.pos = 0
        self.tokens: list[Token] = []
        self.closers: dict[int, int] = {}  # opener token index -> closer token index
        self._stack: list[tuple[str, int]] = []
        self._newline = False
        # embedded lexers stop at the "}" closing a JSX expression
        self._embedded = embedded
        self._done = False
        self._statement_openers: set[int] = set()
        self._statement_closers: set[int] = set()

    def error(self, reason: str, offset: int) -> ExportParseError:
        return ExportParseError(reason, file_path=self.filename, offset=offset)

    def run(self) -> list[Token]:
        code = self.code
        n = len(code)
        if not self._embedded:
            if code.startswith("\ufeff"):
                self.pos = 1
            if code.startswith("#!", self.pos):
                end = code.find("\n", self.pos)
                self.pos = n if end == -1 else end

        while self.pos < n and not self._done:
            ch = code[self.pos]

            if ch in _LINE_BREAKS:
                self._newline = True
                self.pos += 1
                continue
            if ch.isspace() or ch == "\ufeff":
                self.pos += 1
                continue

            if ch == "/":
                nxt = code[self.pos + 1:self.pos + 2]
                if nxt == "/":
                    self._line_comment()
                    continue
                if nxt == "*":
                    self._block_comment()
                    continue
                if self._regex_allowed():
                    end = self._scan_regex(self.pos)
                    if end is not None:
                        self._emit("regex", code[self.pos:end], self.pos)
                        self.pos = end
                        continue

            if ch in "'\"":
                self._string()
                continue
            if ch == "`":
                self._template(self.pos + 1, self.pos)
                continue

            if ch in "0123456789" or (ch == "." and code[self.pos + 1:self.pos + 2].isdigit()):
                m = _NUMBER_RE.match(code, self.pos)
                if m:
                    self._emit("number", m.group(0), self.pos)
                    self.pos = m.end()
                    continue

            if ch == "#":
                m = _IDENT_RE.match(code, self.pos + 1)
                if m:
                    self._emit("private", "#" + m.group(0), self.pos)
                    self.pos = m.end()
                    continue

            m = _IDENT_RE.match(code, self.pos)
            if m:
                self._emit("name", m.group(0), self.pos)
                self.pos = m.end()
                continue

            if ch == "<" and self.jsx and self._regex_allowed():
                end = self._try_jsx(self.pos)
                if end is not None:
                    self._emit("jsx", code[self.pos:end], self.pos)
                    self.pos = end
                    continue

            m = _PUNCT_RE.match(code, self.pos)
            if m:
                self._punct(m.group(0), self.pos)
                continue

            raise self.error(f"Unexpected character {ch!r}", self.pos)

        if self._embedded and not self._done:
            raise self.error("Unterminated JSX expression", self.pos)
        if self._stack:
            opener, index = self._stack[-1]
            if opener == _TEMPLATE_SUB:
                raise self.error("Unterminated template literal", self.tokens[index].start)
            raise self.error(f"Unclosed '{opener}'", self.tokens[index].start)
        return self.tokens

    # -- emitters ----------------------------------------------------------

    def _emit(self, kind: str, value: str, start: int) -> None:
        self.tokens.append(Token(kind, value, start, len(self._stack), self._newline))
        self._newline = False

    def _punct(self, value: str, start: int) -> None:
        self.pos = start + len(value)
        if value in _OPENERS:
            opens_statement = self._opens_statement(value)
            self._emit("punct", value, start)
            index = len(self.tokens) - 1
            if opens_statement:
                self._statement_openers.add(index)
            self._stack.append((value, index))
            return
        if value not in _CLOSERS:
            self._emit("punct", value, start)
            return

        if not self._stack:
            if self._embedded and value == "}":
                self._done = True
                return
            raise self.error(f"Unbalanced '{value}'", start)
        opener, index = self._stack.pop()
        if opener == _TEMPLATE_SUB and value == "}":
            self._template(start + 1, start)
            return
        if _OPENERS.get(opener) != value:
            raise self.error(f"Unbalanced '{value}'", start)
        self._emit("punct", value, start)
        self.closers[index] = len(self.tokens) - 1
        if index in self._statement_openers:
            self._statement_closers.add(len(self.tokens) - 1)

    def _opens_statement(self, opener: str) -> bool:
        """True for the ``(`` of a control head or the ``{`` of a block."""
        if opener == "(":
            k = len(self.tokens) - 1
            if k >= 1 and self.tokens[k].value == "await":  # for await (
                k -= 1
            if k < 0 or self.tokens[k].kind != "name" or self.tokens[k].value not in _CONTROL_HEADS:
                return False
            before = self.tokens[k - 1] if k else None
            return before is None or not (before.kind == "punct" and before.value in (".", "?."))
        if opener == "{":
            if not self.tokens:
                return True
            prev = self.tokens[-1]
            if prev.kind == "punct":
                return prev.value in (")", "{", "}", ";", "=>")
            if prev.kind == "name":
                return prev.value not in _EXPRESSION_KEYWORDS
        return False

    # -- scanners ----------------------------------------------------------

    def _line_comment(self) -> None:
        p = self.pos + 2
        while p < len(self.code) and self.code[p] not in _LINE_BREAKS:
            p += 1
        self.pos = p

    def _block_comment(self) -> None:
        end = self.code.find("*/", self.pos + 2)
        if end == -1:
            raise self.error("Unterminated comment", self.pos)
        if any(c in _LINE_BREAKS for c in self.code[self.pos:end]):
            self._newline = True
        self.pos = end + 2

    def _string(self) -> None:
        code = self.code
        quote = code[self.pos]
        p = self.pos + 1
        while p < len(code):
            c = code[p]
            if c == "\\":
                p += 3 if code.startswith("\r\n", p + 1) else 2
                continue
            if c == quote:
                self._emit("string", _unescape(code[self.pos + 1:p]), self.pos)
                self.pos = p + 1
                return
            if c in "\n\r":
                break
            p += 1
        raise self.error("Unterminated string literal", self.pos)

    def _template(self, p: int, start: int) -> None:
        """Scan template text from *p* up to the closing backtick or ``${``."""
        code = self.code
        while p < len(code):
            c = code[p]
            if c == "\\":
                p += 2
                continue
            if c == "`":
                self._emit("template", code[start:p + 1], start)
                self.pos = p + 1
                return
            if c == "$" and code.startswith("{", p + 1):
                self._emit("template", code[start:p + 2], start)
                self._stack.append((_TEMPLATE_SUB, len(self.tokens) - 1))
                self.pos = p + 2
                return
            if c in _LINE_BREAKS:
                self._newline = True
            p += 1
        raise self.error("Unterminated template literal", start)

    def _regex_allowed(self) -> bool:
        if not self.tokens:
            return True
        prev = self.tokens[-1]
        if prev.kind == "name":
            return prev.value in _REGEX_AFTER
        if prev.kind == "template":
            return prev.value.endswith(_TEMPLATE_SUB)
        if prev.kind != "punct":
            return False
        if prev.value in (")", "}"):
            return len(self.tokens) - 1 in self._statement_closers
        return prev.value not in ("]", "++", "--")

    # -- JSX ---------------------------------------------------------------

    def _try_jsx(self, start: int) -> int | None:
        nxt = self.code[start + 1:start + 2]
        if not nxt or not (nxt == ">" or nxt.isalpha() or nxt in "_$"):
            return None
        try:
            return self._jsx_element(start)
        except ExportParseError:
            return None

    def _jsx_element(self, start: int) -> int:
        """Offset just past the JSX element or fragment opening at *start*."""
        code = self.code
        m = _JSX_NAME_RE.match(code, start + 1)
        name = m.group(0) if m else ""
        p = m.end() if m else start + 1

        while True:
            while p < len(code) and code[p].isspace():
                p += 1
            if p >= len(code):
                raise self.error("Unterminated JSX tag", start)
            c = code[p]
            if code.startswith("/>", p):
                return p + 2
            if c == ">":
                p += 1
                break
            if c == "{":
                p = self._jsx_expression(p)
            elif c in "'\"":
                end = code.find(c, p + 1)
                if end == -1:
                    raise self.error("Unterminated JSX attribute", p)
                p = end + 1
            elif c == "<":
                p = self._jsx_element(p)
            elif c == "=" and name:
                p += 1
            else:
                m = _JSX_NAME_RE.match(code, p)
                if not m or not name:
                    raise self.error("Malformed JSX tag", p)
                p = m.end()

        while p < len(code):
            c = code[p]
            if c == "{":
                p = self._jsx_expression(p)
            elif code.startswith("</", p):
                end = code.find(">", p)
                if end == -1 or code[p + 2:end].strip() != name:
                    raise self.error("Mismatched JSX closing tag", p)
                return end + 1
            elif c == "<":
                p = self._jsx_element(p)
            else:
                p += 1
        raise self.error("Unterminated JSX element", start)

    def _jsx_expression(self, start: int) -> int:
        """Lex the ``{...}`` at *start*; return the offset past its ``}``."""
        sub = _Lexer(self.code, self.filename, jsx=self.jsx, embedded=True)
        sub.pos = start + 1
        sub.run()
        return sub.pos

    def _scan_regex(self, start: int) -> int | None:
        code = self.code
        p = start + 1
        in_class = False
        while p < len(code):
            c = code[p]
            if c in _LINE_BREAKS:
                return None
            if c == "\\":
                p += 2
                continue
            if in_class:
                if c == "]":
                    in_class = False
            elif c == "[":
                in_class = True
            elif c == "/":
                p += 1
                while p < len(code) and (code[p].isalnum() or code[p] in "_$"):
                    p += 1
                return p
            p += 1
        return None


def tokenize(code: str, filename: str = "") -> tuple[list[Token], dict[int, int]]:
    """Split *code* into tokens; also return the opener → closer index map.

    Raises ``ExportParseError`` on unterminated literals or comments and
    on unbalanced brackets.
    """
    lexer = _Lexer(code, filename)
    tokens = lexer.run()
    return tokens, lexer.closers


# ---------------------------------------------------------------------------
# Export matcher
# ---------------------------------------------------------------------------


class _ExportScanner:
    def __init__(self, tokens: list[Token], closers: dict[int, int], filename: str) -> None:
        self.tokens = tokens
        self.closers = closers
        self.filename = filename

    def error(self, reason: str, index: int) -> ExportParseError:
        offset = self.tokens[index].start if index < len(self.tokens) else -1
        return ExportParseError(reason, file_path=self.filename, offset=offset)

    def _value(self, index: int) -> str | None:
        if index >= len(self.tokens):
            return None
        return self.tokens[index].value

    def _is_punct(self, index: int, value: str) -> bool:
        return (
            index < len(self.tokens)
            and self.tokens[index].kind == "punct"
            and self.tokens[index].value == value
        )

    def scan(self) -> ExportDetails:
        exports: list[str] = []
        locations: list[str] = []
        has_module_syntax = False

        for i, tok in enumerate(self.tokens):
            if tok.depth != 0 or tok.kind != "name":
                continue
            if i > 0 and self.tokens[i - 1].value in (".", "?."):
                continue
            if tok.value == "import":
                nxt = self._value(i + 1)
                if nxt is not None and nxt != "(":
                    has_module_syntax = True
            elif tok.value == "export":
                has_module_syntax = True
                self._export(i + 1, exports, locations)

        return ExportDetails(
            exports=exports,
            export_all_locations=locations,
            has_module_syntax=has_module_syntax,
        )

    def _export(self, j: int, exports: list[str], locations: list[str]) -> None:
        if j >= len(self.tokens):
            raise self.error("Unexpected end of input after 'export'", j)
        tok = self.tokens[j]
        value = tok.value if tok.kind in ("name", "punct") else ""

        if value == "default":
            if self._value(j + 1) == "interface":
                return
            exports.append("default")
        elif value == "*":
            k = j + 1
            if self._value(k) == "as":
                k += 2
            if self._value(k) != "from" or k + 1 >= len(self.tokens) \
                    or self.tokens[k + 1].kind != "string":
                raise self.error("Expected 'from \"module\"' after 'export *'", k)
            locations.append(self.tokens[k + 1].value)
        elif value == "{":
            exports.extend(self._specifiers(j))
        elif value in ("var", "let", "const"):
            if value == "const" and self._value(j + 1) == "enum":
                return
            exports.extend(self._declarations(j + 1))
        elif value == "async" and self._value(j + 1) == "function":
            exports.append(self._function_name(j + 1))
        elif value == "function":
            exports.append(self._function_name(j))
        elif value in ("class", "enum", "namespace"):
            exports.append(self._name_at(j + 1))
        elif value == "abstract" and self._value(j + 1) == "class":
            exports.append(self._name_at(j + 2))
        elif value in _TYPE_ONLY_STARTERS:
            return
        else:
            raise self.error(f"Unexpected token {tok.value!r} after 'export'", j)

    def _name_at(self, index: int) -> str:
        if index >= len(self.tokens) or self.tokens[index].kind != "name":
            raise self.error("Expected an identifier", index)
        return self.tokens[index].value

    def _function_name(self, index: int) -> str:
        k = index + 1
        if self._is_punct(k, "*"):
            k += 1
        return self._name_at(k)

    # -- export { ... } ----------------------------------------------------

    def _specifiers(self, open_index: int) -> list[str]:
        close = self.closers[open_index]
        names: list[str] = []
        item: list[Token] = []
        for tok in [*self.tokens[open_index + 1:close], None]:
            if tok is not None and not (tok.kind == "punct" and tok.value == ","):
                item.append(tok)
                continue
            if not item:
                continue
            if item[0].kind == "name" and item[0].value == "type" and len(item) in (2, 4):
                item = []
                continue
            if len(item) == 1:
                names.append(item[0].value)
            elif len(item) == 3 and item[1].value == "as":
                names.append(item[2].value)
            else:
                raise ExportParseError(
                    "Malformed export specifier",
                    file_path=self.filename,
                    offset=item[0].start,
                )
            item = []
        return names

    # -- export var / let / const ------------------------------------------

    def _declarations(self, k: int) -> list[str]:
        names: list[str] = []
        while True:
            k = self._binding(k, names)
            if self._is_punct(k, "!"):
                k += 1
            k = self._skip_type_annotation(k)
            if self._is_punct(k, "="):
                k = self._skip_initializer(k + 1)
            if self._is_punct(k, ",") and self.tokens[k].depth == 0:
                k += 1
                continue
            return names

    def _binding(self, k: int, names: list[str]) -> int:
        if k >= len(self.tokens):
            raise self.error("Expected a binding", k)
        tok = self.tokens[k]
        if tok.kind == "name":
            names.append(tok.value)
            return k + 1
        if tok.kind == "punct" and tok.value == "{":
            self._object_pattern(k, names)
            return self.closers[k] + 1
        if tok.kind == "punct" and tok.value == "[":
            self._array_pattern(k, names)
            return self.closers[k] + 1
        raise self.error(f"Unexpected token {tok.value!r} in binding", k)

    def _object_pattern(self, open_index: int, names: list[str]) -> None:
        close = self.closers[open_index]
        k = open_index + 1
        while k < close:
            tok = self.tokens[k]
            if tok.kind == "punct" and tok.value == ",":
                k += 1
                continue
            if tok.kind == "punct" and tok.value == "...":
                k = self._binding(k + 1, names)
                continue

            if tok.kind == "punct" and tok.value == "[":
                key_end = self.closers[k] + 1
            else:
                key_end = k + 1
            if self._is_punct(key_end, ":"):
                k = self._binding(key_end + 1, names)
            elif tok.kind == "name":
                names.append(tok.value)
                k = key_end
            else:
                raise self.error("Expected ':' after computed or literal key", key_end)
            k = self._skip_default(k, close)

    def _array_pattern(self, open_index: int, names: list[str]) -> None:
        close = self.closers[open_index]
        k = open_index + 1
        while k < close:
            tok = self.tokens[k]
            if tok.kind == "punct" and tok.value == ",":
                k += 1
                continue
            if tok.kind == "punct" and tok.value == "...":
                k = self._binding(k + 1, names)
                continue
            k = self._binding(k, names)
            k = self._skip_default(k, close)

    def _skip_default(self, k: int, close: int) -> int:
        if not self._is_punct(k, "="):
            return k
        inner = self.tokens[close].depth + 1
        while k < close:
            tok = self.tokens[k]
            if tok.depth == inner and tok.kind == "punct" and tok.value == ",":
                break
            k += 1
        return k

    def _skip_type_annotation(self, k: int) -> int:
        if not self._is_punct(k, ":"):
            return k
        k += 1
        angle = 0
        while k < len(self.tokens):
            tok = self.tokens[k]
            if tok.depth == 0:
                if tok.newline_before and tok.value in _STATEMENT_KEYWORDS:
                    break
                if tok.kind == "punct":
                    if tok.value == "<":
                        angle += 1
                    elif tok.value in (">", ">>", ">>>"):
                        angle -= len(tok.value)
                    elif tok.value == ";" or (tok.value in ("=", ",") and angle <= 0):
                        break
            k += 1
        return k

    def _skip_initializer(self, k: int) -> int:
        while k < len(self.tokens):
            tok = self.tokens[k]
            if tok.depth == 0:
                if tok.kind == "punct" and tok.value in (",", ";"):
                    return k
                if tok.newline_before and tok.kind == "name" and tok.value in _STATEMENT_KEYWORDS:
                    return k
            k += 1
        return k


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def get_exports_details(code: str, filename: str = "module.js") -> ExportDetails:
    """Scan *code* for its top-level exports and wildcard re-export targets.

    Returns an empty ``ExportDetails`` for empty source.
    Raises ``ExportParseError`` when the source cannot be tokenized.
    """
    if not code or not code.strip():
        return ExportDetails()
    tokens, closers = tokenize(code, filename)
    return _ExportScanner(tokens, closers, filename).scan()


__all__ = [
    "Token",
    "get_exports_details",
    "tokenize",
]
