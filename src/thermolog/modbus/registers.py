"""Turn a serial configuration into the register addresses polled per channel."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Union

from ..models import MAX_CHANNEL
from .config import SerialConfig
from .frames import MAX_READ_QUANTITY


@dataclass(frozen=True)
class RegisterBinding:
    channel: int
    logical_address: int
    physical_address: int


@dataclass(frozen=True)
class RegisterRequest:
    start_address: int
    bindings: tuple

    @property
    def quantity(self) -> int:
        return len(self.bindings)


def parse_custom_registers(value: Optional[Union[str, Iterable[object]]]) -> List[int]:
    """
    Parse a register list given as text such as ``"40001; 40003;40010"`` or
    as a sequence (JSON list). Entries that are not integers or fall outside
    0..65535 are dropped.
    """
    if value is None or isinstance(value, str):
        tokens: Iterable[object] = re.split(r"[;,\s]+", value or "")
    else:
        tokens = value
    registers: List[int] = []
    for item in tokens:
        if isinstance(item, bool):
            continue
        token = str(item).strip()
        if not token:
            continue
        try:
            address = int(token, 0) if token.lower().startswith("0x") else int(token)
        except ValueError:
            continue
        if 0 <= address <= 0xFFFF:
            registers.append(address)
    return registers


def logical_addresses(config: SerialConfig) -> List[int]:
    if config.custom_registers:
        return list(config.custom_registers[:MAX_CHANNEL])
    return [config.start_register + index for index in range(config.register_count)]


def to_physical(address: int, config: SerialConfig) -> int:
    if config.auto_offset and address >= config.offset_address:
        return address - config.offset_address
    return address


def resolve_registers(config: SerialConfig) -> List[RegisterBinding]:
    return [
        RegisterBinding(channel=index + 1, logical_address=address, physical_address=to_physical(address, config))
        for index, address in enumerate(logical_addresses(config))
    ]


def group_contiguous(
    bindings: Iterable[RegisterBinding], max_quantity: int = MAX_READ_QUANTITY
) -> List[RegisterRequest]:
    requests: List[RegisterRequest] = []
    current: List[RegisterBinding] = []
    for binding in bindings:
        if (
            current
            and binding.physical_address == current[-1].physical_address + 1
            and len(current) < max_quantity
        ):
            current.append(binding)
            continue
        if current:
            requests.append(RegisterRequest(current[0].physical_address, tuple(current)))
        current = [binding]
    if current:
        requests.append(RegisterRequest(current[0].physical_address, tuple(current)))
    return requests


def describe_registers(config: SerialConfig) -> str:
    if config.custom_registers:
        return "custom registers " + ";".join(str(value) for value in config.custom_registers[:MAX_CHANNEL])
    last = config.start_register + config.register_count - 1
    text = f"registers {config.start_register}-{last}"
    if config.auto_offset and config.start_register >= config.offset_address:
        text += (
            f" (wire {config.start_register - config.offset_address}-{last - config.offset_address})"
        )
    return text
