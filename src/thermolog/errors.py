"""Exception hierarchy shared by the acquisition pipeline."""
from __future__ import annotations

from typing import Optional


class ThermologError(Exception):
    """Base class for every error raised by thermolog."""


class ProtocolError(ThermologError):
    """A Modbus reply could not be accepted."""


class InvalidLengthError(ProtocolError):
    pass


class CrcMismatchError(ProtocolError):
    def __init__(self, expected: int, actual: int):
        super().__init__(f"CRC mismatch (expected=0x{expected:04X}, actual=0x{actual:04X})")
        self.expected = expected
        self.actual = actual


class SlaveMismatchError(ProtocolError):
    def __init__(self, expected: int, actual: int):
        super().__init__(f"Reply from slave {actual}, expected slave {expected}")
        self.expected = expected
        self.actual = actual


class FunctionCodeMismatchError(ProtocolError):
    def __init__(self, expected: int, actual: int):
        super().__init__(f"Reply function code 0x{actual:02X}, expected 0x{expected:02X}")
        self.expected = expected
        self.actual = actual


class ModbusExceptionError(ProtocolError):
    def __init__(self, function_code: int, exception_code: int):
        super().__init__(
            f"Slave returned exception 0x{exception_code:02X} for function 0x{function_code:02X}"
        )
        self.function_code = function_code
        self.exception_code = exception_code


class TransportError(ThermologError):
    """The byte transport failed or is not available."""


class TransportTimeout(TransportError, TimeoutError):
    pass


class HandshakeError(TransportError):
    pass


class FormulaError(ThermologError):
    """A user supplied conversion formula could not be used."""

    def __init__(self, message: str, formula: Optional[str] = None):
        super().__init__(message)
        self.formula = formula


class FormulaSyntaxError(FormulaError):
    def __init__(self, message: str, formula: Optional[str] = None, position: Optional[int] = None):
        if position is not None:
            message = f"{message} at position {position}"
        super().__init__(message, formula)
        self.position = position


class FormulaEvaluationError(FormulaError):
    pass


class CalibrationError(ThermologError):
    pass


class NoDataError(CalibrationError):
    pass


class CsvImportError(ThermologError):
    pass


class NoValidRowsError(CsvImportError):
    def __init__(self, rejected_rows: int = 0):
        super().__init__(f"CSV contains no valid temperature rows ({rejected_rows} rejected)")
        self.rejected_rows = rejected_rows


class ExportError(ThermologError):
    pass


class SessionStateError(ThermologError):
    pass


class SchedulerStateError(ThermologError):
    pass


class ConfigError(ThermologError, ValueError):
    pass
