import logging
from typing import NamedTuple, Optional, Union

from .ast import (
    ASTNode,
    BinaryOperation,
    CellReference,
    Constant,
    FunctionCall,
    RangeReference,
    UnaryOperation,
)
from excel_extractor.errors import FormulaError, UnknownFunction
from excel_extractor.functions import FORMULA_FUNCTIONS
from excel_extractor.grid import CellGrid
from excel_extractor.operators import BINARY_OPERATORS, UNARY_OPERATORS
from excel_extractor.parser import parse_formula
from excel_extractor.references import Resolver
from excel_extractor.types import ScalarValue, Value, is_empty, parse_numeric_text

logger = logging.getLogger(__name__)


class ComputedResult(NamedTuple):
    value: ScalarValue
    is_valid: bool
    error: Optional[str] = None


def first_non_empty(values: list[ScalarValue]) -> ScalarValue:
    """A range used as a plain value reads as its first non-empty cell."""
    for value in values:
        if not is_empty(value):
            return value
    return None


def parse_constant(text: str) -> ScalarValue:
    """Interpret formula text without a leading '=' as a literal value."""
    stripped = text.strip()
    if len(stripped) >= 2 and stripped[0] == stripped[-1] and stripped[0] in "\"'":
        return stripped[1:-1]
    if stripped.lower() in ("true", "false"):
        return stripped.lower() == "true"
    number = parse_numeric_text(stripped)
    if number is not None and stripped[0] not in "$€£¥(":
        return number
    return stripped if stripped else None


class FormulaInterpreter:
    """Evaluates mapping formulas against one workbook's CellGrid.

    Every call to `evaluate` re-reads the grid; nothing is cached between
    formulas.
    """

    def __init__(self, grid: CellGrid | None):
        self.grid = grid

    def evaluate(
        self,
        formula_or_node: Union[str, ASTNode],
        current_sheet: str | None = None,
    ) -> ScalarValue:
        """Evaluate a formula or AST node in the context of a sheet."""
        if isinstance(formula_or_node, str):
            if not formula_or_node.strip().startswith("="):
                return parse_constant(formula_or_node)
            node = parse_formula(formula_or_node)
        else:
            node = formula_or_node

        resolver = Resolver(self.grid, default_sheet=current_sheet)
        result = self._evaluate_node(node, resolver)
        return self._as_scalar(result)

    def compute(
        self, formula: str, current_sheet: str | None = None
    ) -> ComputedResult:
        """Evaluate a formula, reporting failures instead of raising them."""
        try:
            value = self.evaluate(formula, current_sheet)
        except FormulaError as e:
            logger.debug("Formula %r failed: %s", formula, e)
            return ComputedResult(value=None, is_valid=False, error=str(e))
        logger.debug("Formula %r = %r", formula, value)
        return ComputedResult(value=value, is_valid=True)

    def _as_scalar(self, value: Value) -> ScalarValue:
        if isinstance(value, list):
            return first_non_empty(value)
        return value

    def _evaluate_node(self, node: ASTNode, resolver: Resolver) -> Value:
        """Evaluate an AST node."""
        if isinstance(node, Constant):
            return node.value

        elif isinstance(node, BinaryOperation):
            return self._evaluate_binary_op(node, resolver)

        elif isinstance(node, UnaryOperation):
            return self._evaluate_unary_op(node, resolver)

        elif isinstance(node, CellReference):
            return resolver.read_cell(resolver.target(node))

        elif isinstance(node, RangeReference):
            return resolver.read_range(resolver.target(node))

        elif isinstance(node, FunctionCall):
            return self._evaluate_function(node, resolver)

        raise ValueError(f"Unknown node type: {type(node)}")

    def _evaluate_binary_op(
        self, node: BinaryOperation, resolver: Resolver
    ) -> ScalarValue:
        left = self._as_scalar(self._evaluate_node(node.left, resolver))
        right = self._as_scalar(self._evaluate_node(node.right, resolver))

        operation = BINARY_OPERATORS.get(node.operator)
        if operation is None:
            raise ValueError(f"Unknown operator: {node.operator}")
        return operation(left, right)

    def _evaluate_unary_op(
        self, node: UnaryOperation, resolver: Resolver
    ) -> ScalarValue:
        value = self._as_scalar(self._evaluate_node(node.operand, resolver))

        operation = UNARY_OPERATORS.get(node.operator)
        if operation is None:
            raise ValueError(f"Unknown unary operator: {node.operator}")
        return operation(value)

    def _evaluate_function(
        self, node: FunctionCall, resolver: Resolver
    ) -> ScalarValue:
        function = FORMULA_FUNCTIONS.get(node.name.upper())
        if function is None:
            raise UnknownFunction(f"Unknown function: {node.name}")

        return function(
            *(self._evaluate_node(arg, resolver) for arg in node.arguments)
        )
