from typing import Callable, List, Optional

from excel_extractor.errors import ParseError
from excel_extractor.types import parse_number
from .ast import (
    ASTNode,
    BinaryOperation,
    CellReference,
    Constant,
    FunctionCall,
    RangeReference,
    UnaryOperation,
)
from .tokenizer import FormulaTokenizer, Token, TokenType
from .utils import extract_cell_reference


def parse_formula(formula: str) -> ASTNode:
    """Helper function to parse a formula string into an AST."""
    tokens = FormulaTokenizer(formula).tokenize()
    return FormulaParser(tokens).parse()


class FormulaParser:
    """Recursive-descent parser for the mapping formula language.

    Precedence, lowest first: addition/subtraction, multiplication/division,
    unary sign, then primaries (parentheses, function calls, references and
    literals).
    """

    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.current = 0

    def parse(self) -> ASTNode:
        """Parse the whole token list, which must form exactly one expression."""
        self.current = 0
        first = self.peek()
        if first is not None and first.type == TokenType.OPERATOR and first.value == "=":
            self.read()

        if self.peek() is None:
            raise ParseError(
                "Empty formula", position=self._position(), expected="expression"
            )

        node = self.parse_additive()

        trailing = self.peek()
        if trailing is not None:
            raise ParseError(
                f"Unexpected token '{trailing.value}' at position {trailing.position}",
                position=trailing.position,
                expected="end of formula",
            )
        return node

    def peek(self) -> Optional[Token]:
        if self.current >= len(self.tokens):
            return None
        return self.tokens[self.current]

    def peek_next(self) -> Optional[Token]:
        """Look one token past the current one."""
        if self.current + 1 >= len(self.tokens):
            return None
        return self.tokens[self.current + 1]

    def read(self) -> Token:
        """Consume and return the current token."""
        if self.current >= len(self.tokens):
            raise ParseError(
                "Unexpected end of formula",
                position=self._position(),
                expected="expression",
            )
        tok = self.tokens[self.current]
        self.current += 1
        return tok

    def read_if_match(self, *types: TokenType) -> Optional[Token]:
        """Consume the current token only if it has one of `types`."""
        token = self.peek()
        if token is not None and token.type in types:
            self.current += 1
            return token
        return None

    def expect(self, *types: TokenType) -> Token:
        """Consume a token of one of `types`, raising ParseError otherwise."""
        token = self.read_if_match(*types)
        if token is None:
            curr = self.peek()
            type_names = " or ".join(t.name for t in types)
            raise ParseError(
                f"Expected {type_names}, got "
                f"{curr.type.name if curr else 'end of formula'}"
                f" at position {self._position()}",
                position=self._position(),
                expected=type_names,
            )
        return token

    def _position(self) -> int:
        curr = self.peek()
        if curr is not None:
            return curr.position
        if self.tokens:
            last = self.tokens[-1]
            return last.position + len(last.value)
        return 0

    def _parse_binary_operation(
        self, parse_operand: Callable[[], ASTNode], valid_operators: set[str]
    ) -> ASTNode:
        """Parse a left-associative chain of binary operators."""
        left = parse_operand()

        while True:
            next_tok = self.peek()
            if (
                not next_tok
                or next_tok.type != TokenType.OPERATOR
                or next_tok.value not in valid_operators
            ):
                break

            self.read()  # consume operator
            right = parse_operand()
            left = BinaryOperation(left=left, operator=next_tok.value, right=right)

        return left

    def parse_additive(self) -> ASTNode:
        return self._parse_binary_operation(self.parse_term, {"+", "-"})

    def parse_term(self) -> ASTNode:
        return self._parse_binary_operation(self.parse_unary, {"*", "/"})

    def parse_unary(self) -> ASTNode:
        token = self.peek()
        if (
            token is not None
            and token.type == TokenType.OPERATOR
            and token.value in ("+", "-")
        ):
            self.read()
            return UnaryOperation(operator=token.value, operand=self.parse_unary())
        return self.parse_primary()

    def parse_primary(self) -> ASTNode:
        """Parse a primary: literal, reference, function call or (expression)."""
        token = self.peek()
        if token is None:
            raise ParseError(
                "Unexpected end of formula",
                position=self._position(),
                expected="expression",
            )

        if token.type == TokenType.NUMBER:
            self.read()
            return Constant(parse_number(token.value))

        if token.type == TokenType.STRING:
            # "Sheet1"!B2 is accepted as a sheet qualifier
            if (bang := self.peek_next()) is not None and bang.type == TokenType.BANG:
                return self.parse_sheet_reference()
            self.read()
            return Constant(token.value)

        if token.type == TokenType.QUOTED_STRING:
            return self.parse_sheet_reference()

        if token.type == TokenType.IDENTIFIER:
            return self.parse_identifier()

        if token.type == TokenType.LPAREN:
            self.read()  # consume '('
            expr = self.parse_additive()
            if not self.read_if_match(TokenType.RPAREN):
                raise ParseError(
                    f"Expected closing parenthesis ')' at position {self._position()}",
                    position=self._position(),
                    expected=")",
                )
            return expr

        raise ParseError(
            f"Unexpected token '{token.value}' at position {token.position}",
            position=token.position,
            expected="expression",
        )

    def parse_identifier(self) -> ASTNode:
        """Parse an identifier (function call, sheet-qualified or plain reference)."""
        token = self.peek()
        assert token is not None
        next_token = self.peek_next()

        if next_token and next_token.type == TokenType.LPAREN:
            self.read()  # consume name
            self.read()  # consume '('
            return self.parse_function_call(token.value, token.position)

        if next_token and next_token.type == TokenType.BANG:
            return self.parse_sheet_reference()

        return self.parse_cell_reference(None)

    def parse_sheet_reference(self) -> CellReference | RangeReference:
        sheet_token = self.read()
        self.expect(TokenType.BANG)
        return self.parse_cell_reference(sheet_token.value)

    def parse_function_call(self, name: str, position: int) -> FunctionCall:
        """Arguments up to the closing parenthesis; the name is already consumed."""
        args: list[ASTNode] = []
        closing = self.read_if_match(TokenType.RPAREN)
        while closing is None:
            args.append(self.parse_additive())
            if self.peek() is None:
                raise ParseError(
                    f"Unexpected end of formula in call to {name} (opened at position {position})",
                    position=self._position(),
                    expected="',' or ')'",
                )
            separator = self.expect(TokenType.COMMA, TokenType.RPAREN)
            if separator.type == TokenType.RPAREN:
                closing = separator
        return FunctionCall(name=name.upper(), arguments=tuple(args))

    def parse_cell_reference(
        self, sheet: Optional[str] = None
    ) -> CellReference | RangeReference:
        """Parse a cell reference or range with optional sheet qualifier."""
        token = self.expect(TokenType.IDENTIFIER)

        ref = extract_cell_reference(token.value, sheet)
        if not ref:
            raise ParseError(
                f"Invalid cell reference '{token.value}' at position {token.position}",
                position=token.position,
                expected="cell reference",
            )

        if not self.read_if_match(TokenType.COLON):
            return ref

        # The end of a range may repeat the sheet: Sheet1!A1:Sheet1!A5
        end_sheet = sheet
        next_token = self.peek()
        after = self.peek_next()
        if (
            next_token is not None
            and next_token.type
            in (TokenType.QUOTED_STRING, TokenType.IDENTIFIER, TokenType.STRING)
            and after is not None
            and after.type == TokenType.BANG
        ):
            self.read()  # sheet name
            self.read()  # '!'
            end_sheet = next_token.value
            if end_sheet != sheet:
                raise ParseError(
                    f"Range must be on the same sheet: {sheet} vs {end_sheet}",
                    position=next_token.position,
                    expected=f"cell reference on sheet {sheet}",
                )

        end_token = self.expect(TokenType.IDENTIFIER)
        end_ref = extract_cell_reference(end_token.value, end_sheet)
        if not end_ref:
            raise ParseError(
                f"Invalid cell reference '{end_token.value}' at position {end_token.position}",
                position=end_token.position,
                expected="cell reference",
            )
        return RangeReference(start=ref, end=end_ref)
