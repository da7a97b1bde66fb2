from __future__ import annotations

import logging
import math

import numpy as np
import pytest

from thermolog.conversion import TemperatureConverter, builtin_conversion, convert_raw_to_temperature
from thermolog.errors import FormulaSyntaxError
from thermolog.modbus.config import TemperatureConversionConfig


@pytest.mark.parametrize(
    "raw, expected",
    [(0x0000, 0.0), (0x0190, 40.0), (0xFE70, -40.0), (32767, 3276.7), (32768, -3276.8), (65535, -0.1)],
)
def test_builtin_conversion(raw, expected):
    assert np.isclose(builtin_conversion(raw), expected)
    assert np.isclose(convert_raw_to_temperature(raw), expected)


@pytest.mark.parametrize("raw", [float("nan"), float("inf"), "12", None, True])
def test_invalid_raw_values_convert_to_zero(raw):
    assert convert_raw_to_temperature(raw) == 0.0


def test_out_of_range_raw_values_are_clamped(caplog):
    with caplog.at_level(logging.WARNING):
        assert convert_raw_to_temperature(-5) == 0.0
        assert np.isclose(convert_raw_to_temperature(70000), -0.1)
    assert "clamped" in caplog.text


def test_numpy_integers_are_accepted():
    assert np.isclose(convert_raw_to_temperature(np.uint16(400)), 40.0)


def test_custom_formula_is_used():
    cfg = TemperatureConversionConfig(mode="custom", custom_formula="registerValue / 10 - 40")
    converter = TemperatureConverter(cfg)
    assert np.isclose(converter.convert(650), 25.0)
    assert converter.formula_errors == 0


def test_custom_formula_failure_falls_back_to_builtin(caplog):
    cfg = TemperatureConversionConfig(mode="custom", custom_formula="1 / (registerValue - 400)")
    converter = TemperatureConverter(cfg)
    with caplog.at_level(logging.WARNING):
        assert np.isclose(converter.convert(400), 40.0)
        assert np.isclose(converter.convert(400), 40.0)
    assert converter.formula_errors == 2
    assert converter.last_error is not None
    assert caplog.text.count("falls back") + caplog.text.count("using builtin") == 1


def test_syntax_error_falls_back_without_raising():
    cfg = TemperatureConversionConfig(mode="custom", custom_formula="registerValue *")
    converter = TemperatureConverter(cfg)
    assert np.isclose(converter.convert(250), 25.0)
    assert isinstance(converter.last_error, FormulaSyntaxError)


def test_non_finite_formula_result_falls_back():
    cfg = TemperatureConversionConfig(mode="custom", custom_formula="exp(registerValue)")
    converter = TemperatureConverter(cfg)
    value = converter.convert(2000)
    assert math.isfinite(value)
    assert np.isclose(value, 200.0)


@pytest.mark.parametrize(
    "formula",
    ["0x" + "F" * 300, "(" * 3000 + "registerValue" + ")" * 3000, "registerValue" + " + 1" * 3000],
)
def test_pathological_formulas_never_raise(formula):
    cfg = TemperatureConversionConfig(mode="custom", custom_formula=formula)
    converter = TemperatureConverter(cfg)
    assert np.isclose(converter.convert(400), 40.0)


def test_formula_recompiled_after_config_update():
    converter = TemperatureConverter(TemperatureConversionConfig(mode="custom", custom_formula="registerValue"))
    assert converter.convert(7) == 7.0
    converter.update_config(TemperatureConversionConfig(mode="custom", custom_formula="registerValue * 2"))
    assert converter.convert(7) == 14.0


def test_preview_reports_errors():
    converter = TemperatureConverter()
    ok = converter.preview(TemperatureConversionConfig(mode="custom", custom_formula="registerValue / 10", test_value=250))
    assert ok.ok and ok.temperature == 25.0
    bad = converter.preview(TemperatureConversionConfig(mode="custom", custom_formula="registerValue /", test_value=250))
    assert not bad.ok
    assert bad.temperature == 25.0
    assert converter.formula_errors == 0
