"""Formula module - Matomo metric formula parsing and translation.

This module provides:
- The expression tree node types
- A parser for Matomo's formula syntax
- Translation into Looker Studio calculated field syntax
"""

from matomo_connector.formula.parser import parse_formula
from matomo_connector.formula.translator import (
    OPERATOR_SYMBOLS,
    SUPPORTED_FUNCTIONS,
    FormulaTranslator,
    TranslationResult,
    collect_temporary_metrics,
    translate,
)

__all__ = [
    "OPERATOR_SYMBOLS",
    "SUPPORTED_FUNCTIONS",
    "FormulaTranslator",
    "TranslationResult",
    "collect_temporary_metrics",
    "parse_formula",
    "translate",
]
