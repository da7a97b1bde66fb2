from __future__ import annotations

import pytest

from thermolog.errors import CsvImportError, NoDataError, SchedulerStateError, SessionStateError
from thermolog.export import write_csv
from thermolog.models import CalibrationOffset, SessionAction, TemperatureReading
from thermolog.modbus.config import MonitorConfig, SerialConfig
from thermolog.monitor import TemperatureMonitor


def make_monitor(slave=None, tmp_path=None) -> TemperatureMonitor:
    cfg = MonitorConfig()
    cfg.serial = SerialConfig(start_register=0, register_count=3)
    cfg.modbus.timeout_ms = 50
    cfg.modbus.retries = 0
    if tmp_path is not None:
        cfg.storage.output_dir = tmp_path / "exports"
    return TemperatureMonitor(cfg, slave)


def feed(monitor: TemperatureMonitor, readings):
    monitor._on_readings(list(readings))


def test_new_readings_are_calibrated_in_the_store(fake_slave):
    slave = fake_slave({0: 200, 1: 300, 2: 400})
    monitor = make_monitor(slave)
    monitor.connect()
    feed(monitor, monitor.scheduler.tick())
    assert monitor.apply_calibration([CalibrationOffset(2, 0.5, True)]) == 3
    feed(monitor, monitor.scheduler.tick())
    snap = monitor.readings()
    assert len(snap) == 6
    ch2 = [r.calibrated_temperature for r in snap if r.channel == 2]
    assert ch2 == [pytest.approx(30.5), pytest.approx(30.5)]
    assert all(r.calibrated_temperature is None for r in snap if r.channel != 2)


def test_calibration_without_data_is_rejected():
    monitor = make_monitor()
    with pytest.raises(NoDataError):
        monitor.apply_calibration([CalibrationOffset(1, 1.0)])
    assert not monitor.calibration.active


def test_one_click_calibration():
    monitor = make_monitor()
    feed(monitor, [TemperatureReading(1, 1, 24.0, 240), TemperatureReading(1, 2, 26.0, 260)])
    offsets = monitor.one_click_calibration(25.0)
    assert {o.channel_id: o.offset for o in offsets} == {1: 1.0, 2: -1.0}
    assert all(r.calibrated_temperature == 25.0 for r in monitor.readings())
    monitor.clear_calibration()
    assert all(r.calibrated_temperature is None for r in monitor.readings())


def test_recording_toggle_drives_session(fake_slave):
    monitor = make_monitor(fake_slave({0: 1}))
    monitor.connect()
    monitor.start_recording()
    try:
        monitor.pause_recording()
        monitor.start_recording()
    finally:
        monitor.shutdown()
    actions = [e.action for e in monitor.session.events]
    assert actions == [SessionAction.START, SessionAction.PAUSE, SessionAction.RESUME, SessionAction.PAUSE]
    assert not monitor.is_recording


def test_test_mode_is_exclusive_with_device(fake_slave):
    monitor = make_monitor(fake_slave())
    monitor.start_test_mode()
    try:
        with pytest.raises(SchedulerStateError):
            monitor.start_recording()
        with pytest.raises(SchedulerStateError):
            monitor.connect()
        with pytest.raises(SessionStateError):
            monitor.clear_data()
    finally:
        monitor.stop_test_mode()
    assert monitor.session.events[0].reason == "Test mode started"
    assert monitor.session.events[-1].action is SessionAction.PAUSE


def test_clear_data_and_new_session(fake_slave):
    monitor = make_monitor(fake_slave({0: 240, 1: 250, 2: 260}))
    monitor.connect()
    monitor.start_recording()
    monitor.pause_recording()
    monitor.shutdown()
    feed(monitor, [TemperatureReading(1, 1, 24.0, 240)])
    monitor.apply_calibration([CalibrationOffset(1, 1.0)])
    monitor.clear_data()
    assert len(monitor.store) == 0
    assert not monitor.calibration.active
    actions = [e.action for e in monitor.session.events]
    assert actions == [SessionAction.START, SessionAction.PAUSE, SessionAction.RESUME, SessionAction.STOP]
    assert monitor.session.last_event.reason == "Current data cleared"

    assert monitor.session.begin("Recording started").action is SessionAction.START

    feed(monitor, [TemperatureReading(2, 1, 24.0, 240)])
    monitor.new_session()
    assert len(monitor.store) == 0
    assert [e.reason for e in monitor.session.events] == ["New session started"]


def test_import_replace_and_continue(tmp_path):
    first = write_csv(tmp_path / "a.csv", [TemperatureReading(1000, 1, 20.0, 200), TemperatureReading(1000, 2, 21.0, 210)])
    second = write_csv(tmp_path / "b.csv", [TemperatureReading(500, 1, 22.0, 220)])

    monitor = make_monitor()
    monitor.session.begin("Recording started", timestamp=0)
    monitor.import_csv(first)
    assert len(monitor.store) == 2
    assert monitor.session.events == []

    monitor.import_csv(second, continue_writing=True)
    snap = monitor.readings()
    assert [r.timestamp for r in snap] == [500, 1000, 1000]
    last = monitor.session.last_event
    assert last.action is SessionAction.START
    assert "b.csv" in last.reason and "mismatch" in last.reason

    monitor.session.halt("Recording paused")
    monitor.import_csv(second, continue_writing=True)
    assert monitor.session.last_event.action is SessionAction.RESUME


def test_failed_import_leaves_state_untouched(tmp_path):
    bad = tmp_path / "bad.csv"
    bad.write_text("Timestamp,Channel,Temperature_C\n1,0,20\n", encoding="utf-8")
    monitor = make_monitor()
    feed(monitor, [TemperatureReading(1, 1, 24.0, 240)])
    with pytest.raises(CsvImportError):
        monitor.import_csv(bad)
    assert len(monitor.store) == 1


def test_export_and_autosave(tmp_path):
    monitor = make_monitor(tmp_path=tmp_path)
    assert monitor.maybe_autosave() is None
    feed(monitor, [TemperatureReading(1, 1, 24.0, 240)])
    path = monitor.export_csv()
    assert path.parent == tmp_path / "exports"
    assert path.name.startswith("temperature_data_")

    monitor.config.storage.auto_save_enabled = True
    monitor.config.storage.auto_save_interval_min = 1
    assert monitor.maybe_autosave(now=monitor._last_autosave + 10) is None
    saved = monitor.maybe_autosave(now=monitor._last_autosave + 61)
    assert saved is not None and saved.name.startswith("autosave_")


def test_chart_series_and_statistics():
    monitor = make_monitor()
    feed(monitor, [TemperatureReading(i, 1, 20.0 + i, 200) for i in range(5)])
    series = monitor.chart_series()
    assert len(series) == 5
    assert len(monitor.chart_series(window_minutes=1, now=10_000_000)) == 0
    assert monitor.statistics()[1].current == 24.0
    assert monitor.sampling().frequency_hz == 1.0
    assert monitor.counters()["readings"] == 5
