from __future__ import annotations

import pytest

from thermolog.models import TemperatureReading
from thermolog.plotting import plot_readings


def test_plot_readings_writes_png(tmp_path):
    pytest.importorskip("matplotlib")
    readings = [TemperatureReading(i * 1000, ch, 20.0 + i + ch, 200, 21.0 + i + ch if ch == 1 else None) for i in range(20) for ch in (1, 2)]
    out = plot_readings(readings, tmp_path / "chart.png", calibration_active=True)
    assert out.exists()
    assert out.stat().st_size > 0


def test_plot_readings_requires_data(tmp_path):
    with pytest.raises(ValueError):
        plot_readings([], tmp_path / "chart.png")
