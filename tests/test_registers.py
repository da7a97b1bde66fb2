from __future__ import annotations

from thermolog.modbus.config import SerialConfig
from thermolog.modbus.registers import (
    describe_registers,
    group_contiguous,
    parse_custom_registers,
    resolve_registers,
)


def test_consecutive_registers_with_offset():
    cfg = SerialConfig(start_register=40001, register_count=4, offset_address=40001, auto_offset=True)
    bindings = resolve_registers(cfg)
    assert [b.channel for b in bindings] == [1, 2, 3, 4]
    assert [b.logical_address for b in bindings] == [40001, 40002, 40003, 40004]
    assert [b.physical_address for b in bindings] == [0, 1, 2, 3]


def test_offset_not_applied_when_disabled_or_below_bias():
    cfg = SerialConfig(start_register=40001, register_count=1, auto_offset=False)
    assert resolve_registers(cfg)[0].physical_address == 40001
    cfg = SerialConfig(start_register=100, register_count=1, offset_address=40001, auto_offset=True)
    assert resolve_registers(cfg)[0].physical_address == 100


def test_custom_registers_override_start_and_count():
    cfg = SerialConfig(start_register=0, register_count=10, custom_registers=[7, 3, 12])
    bindings = resolve_registers(cfg)
    assert [(b.channel, b.physical_address) for b in bindings] == [(1, 7), (2, 3), (3, 12)]


def test_custom_registers_capped_at_sixteen():
    cfg = SerialConfig(custom_registers=list(range(100, 120)))
    assert len(resolve_registers(cfg)) == 16


def test_parse_custom_registers_drops_garbage():
    assert parse_custom_registers("40001; 40003;abc; 0x10 ;70000") == [40001, 40003, 16]
    assert parse_custom_registers("") == []
    assert parse_custom_registers([7, 70000, -1, "12", True, None]) == [7, 12]


def test_group_contiguous_splits_on_gaps():
    cfg = SerialConfig(custom_registers=[0, 1, 2, 5, 6, 9])
    requests = group_contiguous(resolve_registers(cfg))
    assert [(r.start_address, r.quantity) for r in requests] == [(0, 3), (5, 2), (9, 1)]
    assert [b.channel for b in requests[1].bindings] == [4, 5]


def test_group_contiguous_respects_max_quantity():
    cfg = SerialConfig(start_register=0, register_count=10)
    requests = group_contiguous(resolve_registers(cfg), max_quantity=4)
    assert [r.quantity for r in requests] == [4, 4, 2]


def test_describe_registers():
    cfg = SerialConfig(start_register=40001, register_count=10, auto_offset=True)
    assert describe_registers(cfg) == "registers 40001-40010 (wire 0-9)"
    assert describe_registers(SerialConfig(custom_registers=[1, 5])) == "custom registers 1;5"
