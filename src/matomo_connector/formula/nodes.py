"""Expression tree for Matomo metric formulas.

Every node is a frozen dataclass. The parser builds a fresh tree for each
formula; the translator only reads it. Child sequences are tuples so a
tree cannot be modified after construction.

``str(node)`` renders a node back to formula syntax. Error messages use it
to quote the offending part of a formula.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import ClassVar, Union

# Operators written as words need a space after them when used as a prefix
_WORD_OPERATORS = {"not", "and", "or", "xor", "mod", "to"}


def _format_constant(value: object) -> str:
    if value is None:
        return "null"
    if value is True:
        return "true"
    if value is False:
        return "false"
    if isinstance(value, str):
        return json.dumps(value)
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return str(value)


@dataclass(frozen=True)
class Constant:
    """A literal number, string, boolean or null."""

    kind: ClassVar[str] = "constant"

    value: str | int | float | bool | None

    def children(self) -> tuple[Node, ...]:
        return ()

    def __str__(self) -> str:
        return _format_constant(self.value)


@dataclass(frozen=True)
class Symbol:
    """A bare name such as ``$nb_visits`` or ``min``."""

    kind: ClassVar[str] = "symbol"

    name: str

    def children(self) -> tuple[Node, ...]:
        return ()

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Index:
    """The dimensions inside one pair of brackets, or a ``.name`` property lookup."""

    kind: ClassVar[str] = "index"

    dimensions: tuple[Node, ...]
    dot_notation: bool = False

    def children(self) -> tuple[Node, ...]:
        return self.dimensions

    def __str__(self) -> str:
        if self.dot_notation and len(self.dimensions) == 1 and isinstance(self.dimensions[0], Constant):
            return f".{self.dimensions[0].value}"
        return "[" + ", ".join(str(d) for d in self.dimensions) + "]"


@dataclass(frozen=True)
class Accessor:
    """``object[index]`` or ``object.name``; chained lookups nest."""

    kind: ClassVar[str] = "accessor"

    object: Node
    index: Index

    def children(self) -> tuple[Node, ...]:
        return (self.object, self.index)

    def __str__(self) -> str:
        return f"{self.object}{self.index}"


@dataclass(frozen=True)
class Conditional:
    """``condition ? true_expr : false_expr``."""

    kind: ClassVar[str] = "conditional"

    condition: Node
    true_expr: Node
    false_expr: Node

    def children(self) -> tuple[Node, ...]:
        return (self.condition, self.true_expr, self.false_expr)

    def __str__(self) -> str:
        return f"{self.condition} ? {self.true_expr} : {self.false_expr}"


@dataclass(frozen=True)
class Operator:
    """An operator application.

    Attributes:
        op: Operator as written in the formula (``+``, ``%``, ``and``, ``!``)
        fn: Canonical operation name (``add``, ``mod``, ``and``, ``factorial``)
        args: Operands in source order; one operand for unary operators
    """

    kind: ClassVar[str] = "operator"

    op: str
    fn: str
    args: tuple[Node, ...]

    @property
    def is_unary(self) -> bool:
        return len(self.args) == 1

    @property
    def is_postfix(self) -> bool:
        return self.fn == "factorial"

    def children(self) -> tuple[Node, ...]:
        return self.args

    def __str__(self) -> str:
        if self.is_unary:
            if self.is_postfix:
                return f"{self.args[0]}{self.op}"
            separator = " " if self.op in _WORD_OPERATORS else ""
            return f"{self.op}{separator}{self.args[0]}"
        if len(self.args) != 2:
            return f" {self.op} ".join(str(arg) for arg in self.args)
        head, links = binary_chain(self)
        return str(head) + "".join(f" {link.op} {link.args[1]}" for link in links)

    @property
    def is_binary(self) -> bool:
        return len(self.args) == 2


def binary_chain(node: Operator) -> tuple[Node, list[Operator]]:
    """Unroll the left spine of ``a + b - c * d``-style operator chains.

    Returns the leftmost operand and the binary operators along the spine,
    innermost first, so ``a + b - c`` gives ``(a, [a + b, a + b - c])``.
    """
    links = []
    current: Node = node
    while isinstance(current, Operator) and current.is_binary:
        links.append(current)
        current = current.args[0]
    links.reverse()
    return current, links


@dataclass(frozen=True)
class Parenthesis:
    """An explicitly parenthesized expression."""

    kind: ClassVar[str] = "parenthesis"

    content: Node

    def children(self) -> tuple[Node, ...]:
        return (self.content,)

    def __str__(self) -> str:
        return f"({self.content})"


@dataclass(frozen=True)
class Relational:
    """A chain of two or more comparisons, e.g. ``a < b <= c``.

    ``conditionals[i]`` compares ``params[i]`` with ``params[i + 1]`` and
    holds the canonical operation name (``smaller``, ``largerEq``...).
    """

    kind: ClassVar[str] = "relational"

    conditionals: tuple[str, ...]
    params: tuple[Node, ...]
    ops: tuple[str, ...] = field(default=())

    def children(self) -> tuple[Node, ...]:
        return self.params

    def __str__(self) -> str:
        parts = [str(self.params[0])]
        ops = self.ops or self.conditionals
        for op, param in zip(ops, self.params[1:], strict=False):
            parts.append(f"{op} {param}")
        return " ".join(parts)


@dataclass(frozen=True)
class FunctionCall:
    """``name(arg, ...)``; ``callee`` is usually a :class:`Symbol`."""

    kind: ClassVar[str] = "function call"

    callee: Node
    args: tuple[Node, ...]

    @property
    def name(self) -> str:
        return self.callee.name if isinstance(self.callee, Symbol) else str(self.callee)

    def children(self) -> tuple[Node, ...]:
        return (self.callee, *self.args)

    def __str__(self) -> str:
        return f"{self.name}(" + ", ".join(str(arg) for arg in self.args) + ")"


# ==================== CONSTRUCTS THE HOST CANNOT EXPRESS ====================


@dataclass(frozen=True)
class ArrayLiteral:
    """``[a, b, c]``."""

    kind: ClassVar[str] = "array literal"

    items: tuple[Node, ...]

    def children(self) -> tuple[Node, ...]:
        return self.items

    def __str__(self) -> str:
        return "[" + ", ".join(str(item) for item in self.items) + "]"


@dataclass(frozen=True)
class ObjectLiteral:
    """``{"key": value, ...}``."""

    kind: ClassVar[str] = "object literal"

    properties: tuple[tuple[str, Node], ...]

    def children(self) -> tuple[Node, ...]:
        return tuple(value for _, value in self.properties)

    def __str__(self) -> str:
        return "{" + ", ".join(f"{json.dumps(key)}: {value}" for key, value in self.properties) + "}"


@dataclass(frozen=True)
class Assignment:
    """``target = value``."""

    kind: ClassVar[str] = "assignment"

    target: Node
    value: Node

    def children(self) -> tuple[Node, ...]:
        return (self.target, self.value)

    def __str__(self) -> str:
        return f"{self.target} = {self.value}"


@dataclass(frozen=True)
class FunctionDefinition:
    """``name(param, ...) = expression``."""

    kind: ClassVar[str] = "function definition"

    name: str
    params: tuple[str, ...]
    expression: Node

    def children(self) -> tuple[Node, ...]:
        return (self.expression,)

    def __str__(self) -> str:
        return f"{self.name}({', '.join(self.params)}) = {self.expression}"


@dataclass(frozen=True)
class Block:
    """Several statements separated by ``;`` or newlines."""

    kind: ClassVar[str] = "statement block"

    statements: tuple[Node, ...]

    def children(self) -> tuple[Node, ...]:
        return self.statements

    def __str__(self) -> str:
        return "; ".join(str(statement) for statement in self.statements)


@dataclass(frozen=True)
class Range:
    """``start:end`` or ``start:step:end``."""

    kind: ClassVar[str] = "range"

    start: Node
    end: Node
    step: Node | None = None

    def children(self) -> tuple[Node, ...]:
        if self.step is None:
            return (self.start, self.end)
        return (self.start, self.step, self.end)

    def __str__(self) -> str:
        return ":".join(str(child) for child in self.children())


Node = Union[
    Constant,
    Symbol,
    Index,
    Accessor,
    Conditional,
    Operator,
    Parenthesis,
    Relational,
    FunctionCall,
    ArrayLiteral,
    ObjectLiteral,
    Assignment,
    FunctionDefinition,
    Block,
    Range,
]


def walk(node: Node) -> Iterator[Node]:
    """Yield ``node`` and every node below it, parents before children."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children()))
