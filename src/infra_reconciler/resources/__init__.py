"""Resource declarations and attribute expressions."""

from infra_reconciler.resources.base import Lifecycle, ResourceDeclaration, ResourceInstance
from infra_reconciler.resources.expressions import (
    UNKNOWN,
    Expression,
    ExpressionError,
    count_index,
    fn,
    parse_expression,
    ref,
    var,
)

__all__ = [
    "UNKNOWN",
    "Expression",
    "ExpressionError",
    "Lifecycle",
    "ResourceDeclaration",
    "ResourceInstance",
    "count_index",
    "fn",
    "parse_expression",
    "ref",
    "var",
]
