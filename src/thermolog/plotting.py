"""Static temperature charts."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Sequence

from .downsample import downsample, readings_to_frame
from .models import TemperatureReading


def plot_readings(
    readings: Sequence[TemperatureReading],
    out_path: Path,
    *,
    calibration_active: bool = False,
    title: Optional[str] = None,
) -> Path:
    """Render one line per channel; calibrated series are drawn dashed."""
    if not readings:
        raise ValueError("No readings to plot")
    plt = _require_matplotlib()
    series = downsample(readings, calibration_active=calibration_active)
    df = readings_to_frame(series).sort_values("timestamp", kind="mergesort")
    df["time"] = (df["timestamp"] - df["timestamp"].min()) / 1000.0

    fig, ax = plt.subplots(figsize=(12, 5))
    for channel, group in df.groupby("channel"):
        line = ax.plot(group["time"], group["temperature"], label=f"CH{channel}", linewidth=1.0)[0]
        calibrated = group["calibrated"]
        if calibrated.notna().any():
            ax.plot(
                group["time"],
                calibrated,
                color=line.get_color(),
                linestyle="--",
                linewidth=1.0,
                label=f"CH{channel} calibrated",
            )

    ax.set_title(title or "Temperature")
    ax.set_xlabel("Time [s]")
    ax.set_ylabel("Temperature [°C]")
    ax.grid(True, alpha=0.3)
    ax.legend(loc="best", fontsize="small", ncol=2)

    out_path.parent.mkdir(parents=True, exist_ok=True)
    fig.tight_layout()
    fig.savefig(out_path, dpi=150)
    plt.close(fig)
    return out_path


def _require_matplotlib() -> Any:
    home_cache = Path.home() / ".cache" / "fontconfig"
    try:
        home_cache.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise RuntimeError("matplotlib cannot write font cache in this environment") from exc

    try:
        import matplotlib
        matplotlib.use("Agg", force=True)
        import matplotlib.pyplot as plt  # type: ignore
    except ImportError as exc:  # pragma: no cover - optional dependency
        raise RuntimeError("matplotlib is required for plotting; install thermolog[plot]") from exc
    return plt
