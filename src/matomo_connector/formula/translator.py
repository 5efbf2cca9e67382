"""Translate Matomo metric formulas into Looker Studio calculated field syntax.

Matomo processed metrics may come with a formula such as
``($nb_conversions / $nb_visits) * 100``. Looker Studio can compute the
metric itself if it receives the formula in its own syntax, together with
the list of intermediate metrics it has to request.

Example:
    >>> result = translate("min($nb_visits, $nb_actions)")
    >>> result.translated_formula
    'NARY_MIN($nb_visits, $nb_actions)'
    >>> result.temporary_metrics
    ('nb_visits', 'nb_actions')
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from matomo_connector.core.exceptions import FormulaError, FormulaParseError, UnsupportedFormulaError
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
    binary_chain,
    walk,
)
from matomo_connector.formula.parser import parse_formula

TEMPORARY_METRIC_SIGIL = "$"
GOALS_SYMBOL = "$goals"

# Matomo function name -> Looker Studio function name
SUPPORTED_FUNCTIONS: dict[str, str] = {
    "min": "NARY_MIN",
    "max": "NARY_MAX",
    "abs": "ABS",
}

# Canonical operation name -> operator symbol
OPERATOR_SYMBOLS: dict[str, str] = {
    "xor": "xor",
    "and": "and",
    "or": "or",
    "bitOr": "|",
    "bitXor": "^|",
    "bitAnd": "&",
    "equal": "==",
    "unequal": "!=",
    "smaller": "<",
    "larger": ">",
    "smallerEq": "<=",
    "largerEq": ">=",
    "leftShift": "<<",
    "rightArithShift": ">>",
    "rightLogShift": ">>>",
    "to": "to",
    "add": "+",
    "subtract": "-",
    "multiply": "*",
    "divide": "/",
    "dotMultiply": ".*",
    "dotDivide": "./",
    "mod": "mod",
    "unaryPlus": "+",
    "unaryMinus": "-",
    "bitNot": "~",
    "not": "not",
    "pow": "^",
    "dotPow": ".^",
    "factorial": "!",
}

_GOAL_INDEX_PATTERN = re.compile(r"^idgoal=(\d+)$")

_DISALLOWED_NODES = (ArrayLiteral, Assignment, Block, FunctionDefinition, ObjectLiteral, Range)

_TOO_DEEP_MESSAGE = "formula is nested too deeply"


@dataclass(frozen=True)
class TranslationResult:
    """Outcome of translating one formula.

    Attributes:
        translated_formula: Formula in Looker Studio syntax, None for an empty input
        temporary_metrics: Referenced metric names without the ``$`` sigil,
            in order of first occurrence
    """

    translated_formula: str | None
    temporary_metrics: tuple[str, ...] = ()


class FormulaTranslator:
    """Translate one formula at a time; instances hold no state between calls."""

    def translate(self, formula: str | None) -> TranslationResult:
        """Translate ``formula``.

        Args:
            formula: Matomo formula text; None, empty or blank returns an empty result

        Returns:
            TranslationResult with the emitted formula and temporary metrics

        Raises:
            FormulaParseError: If the formula is not valid syntax
            UnsupportedFormulaError: If the formula uses a construct with no Looker Studio equivalent
        """
        if formula is None or not formula.strip():
            return TranslationResult(None, ())

        try:
            tree = parse_formula(formula)
        except FormulaParseError as e:
            raise FormulaParseError(
                f'Failed to parse formula "{formula}": {e.message}', formula=formula, position=e.position
            ) from e
        except RecursionError as e:
            raise FormulaParseError(f'Failed to parse formula "{formula}": {_TOO_DEEP_MESSAGE}', formula=formula) from e

        try:
            temporary_metrics = collect_temporary_metrics(tree)
            translated = self._emit(tree)
        except FormulaError as e:
            e.formula = formula
            raise
        except RecursionError as e:
            raise UnsupportedFormulaError(
                f'Cannot translate formula "{formula}": {_TOO_DEEP_MESSAGE}', formula=formula
            ) from e
        return TranslationResult(translated, temporary_metrics)

    # ==================== EMISSION ====================

    def _emit(self, node: Node) -> str:
        if isinstance(node, Accessor):
            return self._emit_accessor(node)
        if isinstance(node, Conditional):
            return f"IF({self._emit(node.condition)}, {self._emit(node.true_expr)}, {self._emit(node.false_expr)})"
        if isinstance(node, Operator):
            return self._emit_operator(node)
        if isinstance(node, Parenthesis):
            return f"({self._emit(node.content)})"
        if isinstance(node, Relational):
            return self._emit_relational(node)
        if isinstance(node, (Constant, Symbol)):
            return str(node)
        if isinstance(node, FunctionCall):
            return self._emit_function_call(node)
        if isinstance(node, _DISALLOWED_NODES):
            raise UnsupportedFormulaError(
                f'Unsupported {node.kind} in formula: "{node}"', node_kind=node.kind, node_text=str(node)
            )
        if isinstance(node, Index):
            raise UnsupportedFormulaError(
                f'Unexpected node "{node}" of kind {node.kind}', node_kind=node.kind, node_text=str(node)
            )
        raise UnsupportedFormulaError(f'Encountered unknown node "{node}"', node_text=str(node))

    def _emit_operator(self, node: Operator) -> str:
        if node.is_binary:
            # Long sums nest on the left; emit the spine in a loop
            head, links = binary_chain(node)
            for link in links:
                self._check_operator(link)
            return self._emit(head) + "".join(f" {link.op} {self._emit(link.args[1])}" for link in links)

        self._check_operator(node)
        operands = [self._emit(arg) for arg in node.args]
        if node.is_unary:
            if node.is_postfix:
                return f"{operands[0]}{node.op}"
            separator = " " if node.op.isalpha() else ""
            return f"{node.op}{separator}{operands[0]}"
        return f" {node.op} ".join(operands)

    @staticmethod
    def _check_operator(node: Operator) -> None:
        if node.fn not in OPERATOR_SYMBOLS:
            raise UnsupportedFormulaError(
                f'Unsupported operator "{node.op}" in "{node}"', node_kind=node.kind, node_text=str(node)
            )

    def _emit_relational(self, node: Relational) -> str:
        parts = [self._emit(node.params[0])]
        for conditional, param in zip(node.conditionals, node.params[1:], strict=True):
            symbol = OPERATOR_SYMBOLS.get(conditional)
            if symbol is None:
                raise UnsupportedFormulaError(
                    f'Unknown relational operator "{conditional}" in "{node}"',
                    node_kind=node.kind,
                    node_text=str(node),
                )
            parts.append(f"{symbol} {self._emit(param)}")
        return " ".join(parts)

    def _emit_function_call(self, node: FunctionCall) -> str:
        target = SUPPORTED_FUNCTIONS.get(node.name) if isinstance(node.callee, Symbol) else None
        if target is None:
            raise UnsupportedFormulaError(
                f'Unknown function "{node.name}" in "{node}"', node_kind=node.kind, node_text=str(node)
            )
        return f"{target}(" + ", ".join(self._emit(arg) for arg in node.args) + ")"

    def _emit_accessor(self, node: Accessor) -> str:
        """Emit ``$goals["idgoal=N"]["column"]`` as ``$goals_N_column``."""

        def reject(reason: str) -> UnsupportedFormulaError:
            return UnsupportedFormulaError(
                f'Unsupported accessor "{node}": {reason}', node_kind=node.kind, node_text=str(node)
            )

        goal = node.object
        if isinstance(goal, Symbol):
            if goal.name == GOALS_SYMBOL:
                raise reject("a goal column is required, e.g. $goals[\"idgoal=1\"][\"revenue\"]")
            raise reject(f"only {GOALS_SYMBOL} can be indexed")
        if not isinstance(goal, Accessor) or not isinstance(goal.object, Symbol):
            raise reject(f"only {GOALS_SYMBOL} can be indexed")
        if goal.object.name != GOALS_SYMBOL:
            raise reject(f"only {GOALS_SYMBOL} can be indexed")

        if len(goal.index.dimensions) != 1:
            raise reject("expected exactly one goal index")
        goal_index = goal.index.dimensions[0]
        if not isinstance(goal_index, Constant) or not isinstance(goal_index.value, str):
            raise reject("the goal index must be a string constant")
        match = _GOAL_INDEX_PATTERN.match(goal_index.value)
        if not match:
            raise reject('the goal index must look like "idgoal=<number>"')

        if len(node.index.dimensions) != 1:
            raise reject("expected exactly one goal column")
        column = node.index.dimensions[0]
        if isinstance(column, Constant) and isinstance(column.value, str):
            column_name = column.value
        elif isinstance(column, Symbol):
            column_name = column.name
        else:
            raise reject("the goal column must be a name")
        return f"{GOALS_SYMBOL}_{match.group(1)}_{column_name}"


def collect_temporary_metrics(tree: Node) -> tuple[str, ...]:
    """Return the ``$``-prefixed symbol names in ``tree`` without the sigil.

    Names appear once, in order of first occurrence. The base symbol of an
    accessor (``$goals``) is an object reference, not a metric.
    """
    accessor_bases = {id(node.object) for node in walk(tree) if isinstance(node, Accessor)}
    metrics: dict[str, None] = {}
    for node in walk(tree):
        if isinstance(node, Symbol) and node.name.startswith(TEMPORARY_METRIC_SIGIL) and id(node) not in accessor_bases:
            metrics.setdefault(node.name[len(TEMPORARY_METRIC_SIGIL) :], None)
    return tuple(metrics)


_default_translator = FormulaTranslator()


def translate(formula: str | None) -> TranslationResult:
    """Translate a Matomo formula with a shared :class:`FormulaTranslator`."""
    return _default_translator.translate(formula)
