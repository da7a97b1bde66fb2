"""Raw register value to temperature conversion."""
from __future__ import annotations

import logging
import math
import numbers
from dataclasses import dataclass
from typing import Any, Optional

from .errors import FormulaError
from .formula import Formula, compile_formula
from .models import RAW_MAX
from .modbus.config import TemperatureConversionConfig

logger = logging.getLogger(__name__)

RESOLUTION_C = 0.1
SIGN_THRESHOLD = 32767


@dataclass(frozen=True)
class FormulaPreview:
    raw_value: int
    temperature: float
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def builtin_conversion(raw_value: int) -> float:
    """Signed 16-bit register, 0.1 °C per count."""
    if raw_value > SIGN_THRESHOLD:
        return (raw_value - 65536) * RESOLUTION_C
    return raw_value * RESOLUTION_C


def sanitize_raw(raw_value: Any) -> Optional[int]:
    """
    Return the raw value as an int within 0..65535, or ``None`` when the
    input is not a finite number. Out of range values are clamped.
    """
    if isinstance(raw_value, bool) or not isinstance(raw_value, numbers.Real):
        logger.warning("Invalid raw value for temperature conversion: %r", raw_value)
        return None
    if not math.isfinite(raw_value):
        logger.warning("Invalid raw value for temperature conversion: %r", raw_value)
        return None
    clamped = max(0, min(RAW_MAX, int(math.floor(raw_value))))
    if clamped != raw_value:
        logger.warning("Raw value %r clamped to %d", raw_value, clamped)
    return clamped


class TemperatureConverter:
    """
    Convert raw register values according to a TemperatureConversionConfig.

    Custom formulas are compiled once per distinct formula text. Any formula
    failure falls back to the builtin conversion; the failure is logged and
    kept in ``last_error`` instead of being raised.
    """

    def __init__(self, config: Optional[TemperatureConversionConfig] = None):
        self.config = config or TemperatureConversionConfig()
        self._formula: Optional[Formula] = None
        self._formula_source: Optional[str] = None
        self._compile_error: Optional[FormulaError] = None
        self.formula_errors = 0
        self.last_error: Optional[FormulaError] = None
        self._last_logged: Optional[str] = None

    def update_config(self, config: TemperatureConversionConfig) -> None:
        self.config = config

    def convert(self, raw_value: Any) -> float:
        clamped = sanitize_raw(raw_value)
        if clamped is None:
            return 0.0
        if self.config.mode != "custom":
            return builtin_conversion(clamped)
        try:
            return self._compiled().evaluate(clamped)
        except FormulaError as exc:
            self._report(exc)
            return builtin_conversion(clamped)

    __call__ = convert

    def preview(self, config: Optional[TemperatureConversionConfig] = None) -> FormulaPreview:
        """Run the configured conversion on ``test_value`` without touching error counters."""
        cfg = config or self.config
        clamped = sanitize_raw(cfg.test_value)
        if clamped is None:
            return FormulaPreview(raw_value=0, temperature=0.0, error="invalid test value")
        if cfg.mode != "custom":
            return FormulaPreview(raw_value=clamped, temperature=builtin_conversion(clamped))
        try:
            temperature = compile_formula(cfg.custom_formula).evaluate(clamped)
        except FormulaError as exc:
            return FormulaPreview(raw_value=clamped, temperature=builtin_conversion(clamped), error=str(exc))
        return FormulaPreview(raw_value=clamped, temperature=temperature)

    def _compiled(self) -> Formula:
        source = self.config.custom_formula
        if source != self._formula_source:
            self._formula_source = source
            self._formula = None
            self._compile_error = None
            try:
                self._formula = compile_formula(source)
            except FormulaError as exc:
                self._compile_error = exc
        if self._compile_error is not None:
            raise self._compile_error
        assert self._formula is not None
        return self._formula

    def _report(self, exc: FormulaError) -> None:
        self.formula_errors += 1
        self.last_error = exc
        if str(exc) != self._last_logged:
            logger.warning("Custom conversion formula failed, using builtin conversion: %s", exc)
            self._last_logged = str(exc)
        else:
            logger.debug("Custom conversion formula failed again: %s", exc)


def convert_raw_to_temperature(
    raw_value: Any, config: Optional[TemperatureConversionConfig] = None
) -> float:
    return TemperatureConverter(config).convert(raw_value)
