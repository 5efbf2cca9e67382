"""Parser for Matomo metric formulas.

Formulas use a general math-expression syntax: the usual arithmetic,
comparison and logical operators with standard precedence, function calls,
bracket and dot accessors, ``? :`` conditionals and chained comparisons.
The parser also recognizes constructs the translator later rejects (array
and object literals, assignments, function definitions, ranges, statement
blocks) so that it can name them in its error messages.

Grammar, lowest precedence first::

    block          := assignment ((";" | NEWLINE) assignment)*
    assignment     := conditional ("=" assignment)?
    conditional    := logical_or ("?" assignment ":" assignment)*
    logical_or     := logical_xor ("or" logical_xor)*
    logical_xor    := logical_and ("xor" logical_and)*
    logical_and    := bit_or ("and" bit_or)*
    bit_or         := bit_xor ("|" bit_xor)*
    bit_xor        := bit_and ("^|" bit_and)*
    bit_and        := relational ("&" relational)*
    relational     := shift (("==" | "!=" | "<" | ">" | "<=" | ">=") shift)*
    shift          := conversion (("<<" | ">>" | ">>>") conversion)*
    conversion     := range ("to" range)*
    range          := additive (":" additive)*
    additive       := multiplicative (("+" | "-") multiplicative)*
    multiplicative := unary (("*" | "/" | ".*" | "./" | "%" | "mod") unary)*
    unary          := ("-" | "+" | "~" | "not") unary | power
    power          := postfix (("^" | ".^") unary)?
    postfix        := accessors "!"*
    accessors      := primary ("(" args ")" | "[" args "]" | "." NAME)*
    primary        := NUMBER | STRING | NAME | "(" assignment ")" | "[" args "]" | "{" properties "}"
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from matomo_connector.core.exceptions import FormulaParseError
from matomo_connector.formula.nodes import (
    Accessor,
    ArrayLiteral,
    Assignment,
    Block,
    Conditional,
    Constant,
    FunctionCall,
    FunctionDefinition,
    Index,
    Node,
    ObjectLiteral,
    Operator,
    Parenthesis,
    Range,
    Relational,
    Symbol,
)

# Longest delimiters first so that ">>>" wins over ">>" and ">"
_DELIMITERS = (
    ">>>",
    "<<",
    ">>",
    "==",
    "!=",
    "<=",
    ">=",
    "^|",
    ".*",
    "./",
    ".^",
    ",",
    "(",
    ")",
    "[",
    "]",
    "{",
    "}",
    ";",
    "+",
    "-",
    "*",
    "/",
    "%",
    "^",
    "~",
    "!",
    "&",
    "|",
    "=",
    ":",
    "?",
    "<",
    ">",
    ".",
)

_NUMBER_PATTERN = re.compile(r"(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_NAME_PATTERN = re.compile(r"[A-Za-z_$][A-Za-z0-9_$]*")

_CONSTANT_NAMES = {"true": True, "false": False, "null": None}

# Binary operator tables: token -> canonical operation name
_BIT_OR = {"|": "bitOr"}
_BIT_XOR = {"^|": "bitXor"}
_BIT_AND = {"&": "bitAnd"}
_RELATIONAL = {
    "==": "equal",
    "!=": "unequal",
    "<": "smaller",
    ">": "larger",
    "<=": "smallerEq",
    ">=": "largerEq",
}
_SHIFT = {"<<": "leftShift", ">>": "rightArithShift", ">>>": "rightLogShift"}
_ADDITIVE = {"+": "add", "-": "subtract"}
_MULTIPLICATIVE = {
    "*": "multiply",
    ".*": "dotMultiply",
    "/": "divide",
    "./": "dotDivide",
    "%": "mod",
    "mod": "mod",
}
_UNARY = {"-": "unaryMinus", "+": "unaryPlus", "~": "bitNot", "not": "not"}
_POWER = {"^": "pow", ".^": "dotPow"}

_WORD_OPERATORS = {"and", "or", "xor", "not", "mod", "to"}

_ESCAPES = {
    '"': '"',
    "'": "'",
    "\\": "\\",
    "/": "/",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
}


@dataclass(frozen=True)
class _Token:
    kind: str  # NUMBER, STRING, NAME, DELIMITER, NEWLINE, END
    value: str
    position: int


def _read_string(text: str, start: int) -> tuple[str, int]:
    """Read a quoted string starting at ``start``; return (value, end position)."""
    quote = text[start]
    chars: list[str] = []
    i = start + 1
    while i < len(text):
        ch = text[i]
        if ch == quote:
            return "".join(chars), i + 1
        if ch == "\\":
            if i + 1 >= len(text):
                break
            escaped = text[i + 1]
            if escaped == "u":
                hex_digits = text[i + 2 : i + 6]
                if not re.fullmatch(r"[0-9A-Fa-f]{4}", hex_digits):
                    raise FormulaParseError(f"Invalid unicode escape (char {i + 1})", formula=text, position=i)
                chars.append(chr(int(hex_digits, 16)))
                i += 6
                continue
            if escaped not in _ESCAPES:
                raise FormulaParseError(
                    f"Invalid escape sequence '\\{escaped}' (char {i + 1})", formula=text, position=i
                )
            chars.append(_ESCAPES[escaped])
            i += 2
            continue
        chars.append(ch)
        i += 1
    raise FormulaParseError(f"End of string {quote} missing (char {start + 1})", formula=text, position=start)


def tokenize(text: str) -> list[_Token]:
    """Split formula text into tokens, always ending with an END token."""
    tokens: list[_Token] = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == "\n":
            tokens.append(_Token("NEWLINE", ch, i))
            i += 1
            continue
        if ch.isspace():
            i += 1
            continue
        if ch in "\"'":
            value, end = _read_string(text, i)
            tokens.append(_Token("STRING", value, i))
            i = end
            continue
        if ch.isdigit() or (ch == "." and i + 1 < len(text) and text[i + 1].isdigit()):
            match = _NUMBER_PATTERN.match(text, i)
            tokens.append(_Token("NUMBER", match.group(0), i))
            i = match.end()
            continue
        match = _NAME_PATTERN.match(text, i)
        if match:
            tokens.append(_Token("NAME", match.group(0), i))
            i = match.end()
            continue
        for delimiter in _DELIMITERS:
            if text.startswith(delimiter, i):
                tokens.append(_Token("DELIMITER", delimiter, i))
                i += len(delimiter)
                break
        else:
            raise FormulaParseError(f'Syntax error in part "{text[i:]}" (char {i + 1})', formula=text, position=i)
    tokens.append(_Token("END", "", len(text)))
    return tokens


def _parse_number(literal: str) -> int | float:
    if re.fullmatch(r"\d+", literal):
        return int(literal)
    return float(literal)


class FormulaParser:
    """Recursive-descent parser producing a :mod:`~matomo_connector.formula.nodes` tree.

    One parser instance parses one formula. Use :func:`parse_formula`.
    """

    def __init__(self, text: str):
        self.text = text
        self.tokens = tokenize(text)
        self.pos = 0
        # Depth of (), [] and {} groups; newlines are insignificant inside them.
        self._nesting_level = 0
        # Nesting level of the innermost "?" whose ":" is still expected;
        # a ":" at that level closes the conditional instead of starting a range.
        self._conditional_level: int | None = None

    # ---------------------------------------------------------------- tokens

    def _peek(self) -> _Token:
        while self._nesting_level > 0 and self.tokens[self.pos].kind == "NEWLINE":
            self.pos += 1
        return self.tokens[self.pos]

    def _advance(self) -> _Token:
        tok = self._peek()
        if tok.kind != "END":
            self.pos += 1
        return tok

    def _at(self, *values: str) -> bool:
        tok = self._peek()
        if tok.kind == "DELIMITER":
            return tok.value in values
        if tok.kind == "NAME":
            return tok.value in values and tok.value in _WORD_OPERATORS
        return False

    def _error(self, message: str, tok: _Token | None = None) -> FormulaParseError:
        tok = tok or self._peek()
        return FormulaParseError(f"{message} (char {tok.position + 1})", formula=self.text, position=tok.position)

    def _expect(self, value: str) -> _Token:
        tok = self._peek()
        if tok.kind != "DELIMITER" or tok.value != value:
            found = "end of expression" if tok.kind == "END" else f"'{tok.value}'"
            raise self._error(f"Expected '{value}' but found {found}", tok)
        return self._advance()

    # ---------------------------------------------------------------- entry

    def parse(self) -> Node:
        node = self._parse_block()
        tok = self._peek()
        if tok.kind != "END":
            raise self._error(f"Unexpected token '{tok.value}'", tok)
        return node

    def _parse_block(self) -> Node:
        statements: list[Node] = []
        separated = False
        saw_separator = False
        while True:
            tok = self._peek()
            if tok.kind == "END":
                break
            if tok.kind == "NEWLINE" or (tok.kind == "DELIMITER" and tok.value == ";"):
                separated = saw_separator = True
                self._advance()
                continue
            if statements and not separated:
                break
            statements.append(self._parse_assignment())
            separated = False
        if not statements:
            raise self._error("Unexpected end of expression")
        if len(statements) == 1 and not saw_separator:
            return statements[0]
        return Block(tuple(statements))

    # ---------------------------------------------------------------- statements

    def _parse_assignment(self) -> Node:
        node = self._parse_conditional()
        if not self._at("="):
            return node
        eq = self._advance()
        value = self._parse_assignment()
        if isinstance(node, (Symbol, Accessor)):
            return Assignment(node, value)
        if isinstance(node, FunctionCall) and isinstance(node.callee, Symbol):
            if all(isinstance(arg, Symbol) for arg in node.args):
                return FunctionDefinition(node.name, tuple(arg.name for arg in node.args), value)
        raise self._error("Invalid left hand side of assignment operator =", eq)

    def _parse_conditional(self) -> Node:
        node = self._parse_logical_or()
        while self._at("?"):
            self._advance()
            previous_level = self._conditional_level
            self._conditional_level = self._nesting_level
            true_expr = self._parse_assignment()
            if not self._at(":"):
                raise self._error("False part of conditional expression expected")
            self._advance()
            self._conditional_level = previous_level
            false_expr = self._parse_assignment()
            node = Conditional(node, true_expr, false_expr)
        return node

    # ---------------------------------------------------------------- binary operators

    def _parse_binary(self, operators: dict[str, str], operand) -> Node:
        node = operand()
        while self._at(*operators):
            op = self._advance().value
            node = Operator(op, operators[op], (node, operand()))
        return node

    def _parse_logical_or(self) -> Node:
        return self._parse_binary({"or": "or"}, self._parse_logical_xor)

    def _parse_logical_xor(self) -> Node:
        return self._parse_binary({"xor": "xor"}, self._parse_logical_and)

    def _parse_logical_and(self) -> Node:
        return self._parse_binary({"and": "and"}, self._parse_bit_or)

    def _parse_bit_or(self) -> Node:
        return self._parse_binary(_BIT_OR, self._parse_bit_xor)

    def _parse_bit_xor(self) -> Node:
        return self._parse_binary(_BIT_XOR, self._parse_bit_and)

    def _parse_bit_and(self) -> Node:
        return self._parse_binary(_BIT_AND, self._parse_relational)

    def _parse_relational(self) -> Node:
        params = [self._parse_shift()]
        ops: list[str] = []
        while self._at(*_RELATIONAL):
            ops.append(self._advance().value)
            params.append(self._parse_shift())
        if not ops:
            return params[0]
        if len(ops) == 1:
            return Operator(ops[0], _RELATIONAL[ops[0]], tuple(params))
        return Relational(tuple(_RELATIONAL[op] for op in ops), tuple(params), tuple(ops))

    def _parse_shift(self) -> Node:
        return self._parse_binary(_SHIFT, self._parse_conversion)

    def _parse_conversion(self) -> Node:
        return self._parse_binary({"to": "to"}, self._parse_range)

    def _parse_range(self) -> Node:
        node = self._parse_additive()
        if not self._at(":") or self._conditional_level == self._nesting_level:
            return node
        params = [node]
        while self._at(":") and len(params) < 3:
            self._advance()
            params.append(self._parse_additive())
        if len(params) == 3:
            return Range(params[0], params[2], params[1])
        return Range(params[0], params[1])

    def _parse_additive(self) -> Node:
        return self._parse_binary(_ADDITIVE, self._parse_multiplicative)

    def _parse_multiplicative(self) -> Node:
        return self._parse_binary(_MULTIPLICATIVE, self._parse_unary)

    # ---------------------------------------------------------------- unary / power / postfix

    def _parse_unary(self) -> Node:
        if self._at(*_UNARY):
            op = self._advance().value
            return Operator(op, _UNARY[op], (self._parse_unary(),))
        return self._parse_power()

    def _parse_power(self) -> Node:
        node = self._parse_postfix()
        if self._at(*_POWER):
            op = self._advance().value
            node = Operator(op, _POWER[op], (node, self._parse_unary()))
        return node

    def _parse_postfix(self) -> Node:
        node = self._parse_accessors(self._parse_primary())
        while self._at("!"):
            op = self._advance().value
            node = Operator(op, "factorial", (node,))
        return node

    def _parse_accessors(self, node: Node) -> Node:
        while True:
            tok = self._peek()
            if tok.kind != "DELIMITER":
                return node
            if tok.value == "(" and isinstance(node, (Symbol, Accessor)):
                self._advance()
                node = FunctionCall(node, self._parse_arguments(")"))
            elif tok.value == "[":
                self._advance()
                dimensions = self._parse_arguments("]")
                if not dimensions:
                    raise self._error("Index expected", tok)
                node = Accessor(node, Index(dimensions))
            elif tok.value == ".":
                self._advance()
                name = self._peek()
                if name.kind != "NAME":
                    raise self._error("Property name expected after dot", name)
                self._advance()
                node = Accessor(node, Index((Constant(name.value),), dot_notation=True))
            else:
                return node

    def _parse_arguments(self, closing: str) -> tuple[Node, ...]:
        """Parse comma separated expressions up to ``closing`` (already past the opener)."""
        self._nesting_level += 1
        args: list[Node] = []
        if not self._at(closing):
            args.append(self._parse_assignment())
            while self._at(","):
                self._advance()
                args.append(self._parse_assignment())
        self._expect(closing)
        self._nesting_level -= 1
        return tuple(args)

    # ---------------------------------------------------------------- primary

    def _parse_primary(self) -> Node:
        tok = self._peek()
        if tok.kind == "NUMBER":
            self._advance()
            return Constant(_parse_number(tok.value))
        if tok.kind == "STRING":
            self._advance()
            return Constant(tok.value)
        if tok.kind == "NAME":
            if tok.value in _WORD_OPERATORS:
                raise self._error(f"Unexpected operator '{tok.value}'", tok)
            self._advance()
            if tok.value in _CONSTANT_NAMES:
                return Constant(_CONSTANT_NAMES[tok.value])
            return Symbol(tok.value)
        if tok.kind == "DELIMITER" and tok.value == "(":
            self._advance()
            self._nesting_level += 1
            content = self._parse_assignment()
            self._expect(")")
            self._nesting_level -= 1
            return Parenthesis(content)
        if tok.kind == "DELIMITER" and tok.value == "[":
            self._advance()
            return ArrayLiteral(self._parse_arguments("]"))
        if tok.kind == "DELIMITER" and tok.value == "{":
            self._advance()
            return self._parse_object()
        if tok.kind == "END":
            raise self._error("Unexpected end of expression", tok)
        raise self._error(f"Value expected, found '{tok.value}'", tok)

    def _parse_object(self) -> ObjectLiteral:
        self._nesting_level += 1
        properties: list[tuple[str, Node]] = []
        while not self._at("}"):
            if properties:
                self._expect(",")
            key_tok = self._peek()
            if key_tok.kind not in ("STRING", "NAME"):
                raise self._error("Symbol or string expected as object key", key_tok)
            self._advance()
            self._expect(":")
            properties.append((key_tok.value, self._parse_assignment()))
        self._expect("}")
        self._nesting_level -= 1
        return ObjectLiteral(tuple(properties))


def parse_formula(text: str) -> Node:
    """Parse ``text`` into an expression tree.

    Raises:
        FormulaParseError: If the text is not a valid expression
    """
    return FormulaParser(text).parse()


__all__ = ["FormulaParser", "parse_formula", "tokenize"]
