class ExtractorError(Exception):
    """Base class for every error raised by excel_extractor."""


# Formula errors are always local to one field mapping.
class FormulaError(ExtractorError):
    pass


class TokenizerError(FormulaError):
    def __init__(self, message: str, position: int | None = None):
        super().__init__(message)
        self.position = position


class ParseError(FormulaError):
    def __init__(
        self,
        message: str,
        position: int | None = None,
        expected: str | None = None,
    ):
        super().__init__(message)
        self.position = position
        self.expected = expected


class ResolutionError(FormulaError):
    pass


class InvalidReference(ResolutionError):
    pass


class SheetNotFound(ResolutionError):
    def __init__(self, sheet: str, suggestion: str | None = None):
        message = f'Worksheet "{sheet}" not found.'
        if suggestion is not None:
            message += f' Did you mean "{suggestion}"?'
        super().__init__(message)
        self.sheet = sheet
        self.suggestion = suggestion


class NoGridLoaded(ResolutionError):
    pass


class EvaluationError(FormulaError):
    pass


class TypeMismatch(EvaluationError):
    pass


class DivisionByZero(EvaluationError):
    pass


class UnknownFunction(EvaluationError):
    pass


class EmptyAggregate(EvaluationError):
    pass


class CoercionError(ExtractorError):
    pass


class RequiredFieldMissing(CoercionError):
    pass


class SchemaError(ExtractorError):
    pass


class WorkbookLoadError(ExtractorError):
    pass


class SinkError(ExtractorError):
    pass


class RunInProgress(ExtractorError):
    pass
