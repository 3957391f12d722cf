from enum import Enum, auto
from typing import List, NamedTuple

from excel_extractor.errors import TokenizerError


class TokenType(Enum):
    IDENTIFIER = auto()
    NUMBER = auto()
    OPERATOR = auto()
    LPAREN = auto()
    RPAREN = auto()
    COMMA = auto()
    COLON = auto()
    BANG = auto()
    # 'Sheet name'
    QUOTED_STRING = auto()
    # "text", or "Sheet name" when followed by '!'
    STRING = auto()


class Token(NamedTuple):
    type: TokenType
    value: str
    position: int


PUNCTUATION = {
    "(": TokenType.LPAREN,
    ")": TokenType.RPAREN,
    ",": TokenType.COMMA,
    ":": TokenType.COLON,
    "!": TokenType.BANG,
}


def is_identifier_char(char: str) -> bool:
    return char.isalnum() or char in "_$"


class FormulaTokenizer:
    """Splits a mapping formula into tokens.

    Whitespace between tokens is dropped. Positions are offsets into the
    stripped formula text, which is what error messages report.
    """

    OPERATORS = "+-*/="

    def __init__(self, formula: str):
        self.formula = formula.strip()
        self.pos = 0
        self.length = len(self.formula)

    def tokenize(self) -> List[Token]:
        tokens: List[Token] = []
        while self.pos < self.length:
            char = self.formula[self.pos]
            start = self.pos

            if char.isspace():
                self.pos += 1
            elif char == '"':
                tokens.append(Token(TokenType.STRING, self._read_quoted('"'), start))
            elif char == "'":
                tokens.append(
                    Token(TokenType.QUOTED_STRING, self._read_quoted("'"), start)
                )
            elif char.isdigit() or char == ".":
                tokens.append(Token(TokenType.NUMBER, self._read_number(), start))
            elif char.isalpha() or char in "_$":
                tokens.append(Token(TokenType.IDENTIFIER, self._read_identifier(), start))
            elif char in self.OPERATORS:
                tokens.append(Token(TokenType.OPERATOR, char, start))
                self.pos += 1
            elif char in PUNCTUATION:
                tokens.append(Token(PUNCTUATION[char], char, start))
                self.pos += 1
            else:
                raise TokenizerError(
                    f"Unexpected character '{char}' at position {start}",
                    position=start,
                )

        return tokens

    def _read_identifier(self) -> str:
        """Function names, cell references (with $ markers) and bare sheet names."""
        start = self.pos
        while self.pos < self.length and is_identifier_char(self.formula[self.pos]):
            self.pos += 1
        return self.formula[start : self.pos]

    def _read_digits(self) -> int:
        start = self.pos
        while self.pos < self.length and self.formula[self.pos].isdigit():
            self.pos += 1
        return self.pos - start

    def _read_number(self) -> str:
        """Integers, decimals ('.5' included) and scientific notation."""
        start = self.pos

        digits = self._read_digits()
        if self.pos < self.length and self.formula[self.pos] == ".":
            self.pos += 1
            fraction = self._read_digits()
            if digits and not fraction:
                raise TokenizerError(
                    f"Invalid number at position {start}: trailing decimal point",
                    position=start,
                )
            digits += fraction
        if not digits:
            raise TokenizerError(
                f"Invalid number at position {start}: no digits", position=start
            )
        if self.pos < self.length and self.formula[self.pos] == ".":
            raise TokenizerError(
                f"Invalid number at position {start}: multiple decimal points",
                position=start,
            )

        if self.pos < self.length and self.formula[self.pos] in "eE":
            self.pos += 1
            if self.pos < self.length and self.formula[self.pos] in "+-":
                self.pos += 1
            if not self._read_digits():
                raise TokenizerError(
                    f"Invalid number at position {start}: missing exponent",
                    position=start,
                )

        return self.formula[start : self.pos]

    def _read_quoted(self, quote: str) -> str:
        """Read text up to the closing quote; a doubled quote is a literal one."""
        start = self.pos
        self.pos += 1
        chars: List[str] = []
        while self.pos < self.length:
            char = self.formula[self.pos]
            self.pos += 1
            if char != quote:
                chars.append(char)
            elif self.pos < self.length and self.formula[self.pos] == quote:
                chars.append(quote)
                self.pos += 1
            else:
                return "".join(chars)

        kind = "string literal" if quote == '"' else "quoted sheet name"
        raise TokenizerError(f"Unterminated {kind}", position=start)
