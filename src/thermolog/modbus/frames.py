from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..errors import (
    CrcMismatchError,
    FunctionCodeMismatchError,
    InvalidLengthError,
    ModbusExceptionError,
    ProtocolError,
    SlaveMismatchError,
)

READ_HOLDING_REGISTERS = 0x03
EXCEPTION_FLAG = 0x80
MIN_RESPONSE_LENGTH = 5
MAX_READ_QUANTITY = 125

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModbusResponse:
    slave_id: int
    function_code: int
    data: bytes

    def registers(self) -> List[int]:
        """Decode the byte-count prefixed payload of a 0x03 reply."""
        if not self.data:
            raise InvalidLengthError("Reply carries no byte count")
        byte_count = self.data[0]
        payload = self.data[1:]
        if byte_count != len(payload) or byte_count % 2:
            raise InvalidLengthError(
                f"Byte count {byte_count} does not match payload length {len(payload)}"
            )
        return list(struct.unpack(f">{byte_count // 2}H", payload))


def crc16_modbus(data: bytes, poly: int = 0xA001, init: int = 0xFFFF) -> int:
    crc = init
    for byte in data:
        crc ^= byte
        for _ in range(8):
            if crc & 0x0001:
                crc = (crc >> 1) ^ poly
            else:
                crc >>= 1
    return crc & 0xFFFF


def append_crc(body: bytes) -> bytes:
    return bytes(body) + struct.pack("<H", crc16_modbus(body))


def build_read_holding_registers(slave_id: int, start_address: int, quantity: int) -> bytes:
    if not 1 <= slave_id <= 247:
        raise ValueError(f"slave_id must be within 1..247, got {slave_id}")
    if not 0 <= start_address <= 0xFFFF:
        raise ValueError(f"start_address must be within 0..65535, got {start_address}")
    if not 1 <= quantity <= MAX_READ_QUANTITY:
        raise ValueError(f"quantity must be within 1..{MAX_READ_QUANTITY}, got {quantity}")
    body = struct.pack(">BBHH", slave_id, READ_HOLDING_REGISTERS, start_address, quantity)
    return append_crc(body)


def build_read_response(slave_id: int, values: List[int]) -> bytes:
    """Build the slave side reply for a 0x03 request (simulators and tests)."""
    payload = struct.pack(f">{len(values)}H", *[value & 0xFFFF for value in values])
    body = struct.pack(">BBB", slave_id, READ_HOLDING_REGISTERS, len(payload)) + payload
    return append_crc(body)


def expected_response_length(header: bytes) -> Optional[int]:
    """Total reply length derived from the first three bytes, if known."""
    if len(header) < 3:
        return None
    if header[1] & EXCEPTION_FLAG:
        return MIN_RESPONSE_LENGTH
    return 3 + header[2] + 2


def parse_response(
    frame: bytes,
    *,
    slave_id: Optional[int] = None,
    function_code: int = READ_HOLDING_REGISTERS,
) -> ModbusResponse:
    if len(frame) < MIN_RESPONSE_LENGTH:
        raise InvalidLengthError(f"Reply too short ({len(frame)} bytes)")
    body = bytes(frame[:-2])
    crc_expected = struct.unpack_from("<H", frame, len(frame) - 2)[0]
    crc_actual = crc16_modbus(body)
    if crc_actual != crc_expected:
        raise CrcMismatchError(crc_expected, crc_actual)
    reply_slave, reply_function = body[0], body[1]
    if slave_id is not None and reply_slave != slave_id:
        raise SlaveMismatchError(slave_id, reply_slave)
    if reply_function == (function_code | EXCEPTION_FLAG):
        raise ModbusExceptionError(function_code, body[2])
    if reply_function != function_code:
        raise FunctionCodeMismatchError(function_code, reply_function)
    return ModbusResponse(slave_id=reply_slave, function_code=reply_function, data=body[2:])


class FrameStats:
    """Counters for accepted and rejected replies."""

    def __init__(self) -> None:
        self._stats: Dict[str, int] = {
            "frames": 0,
            "crc_errors": 0,
            "length_errors": 0,
            "protocol_errors": 0,
        }

    def record(self, error: Optional[ProtocolError] = None) -> None:
        if error is None:
            self._stats["frames"] += 1
        elif isinstance(error, CrcMismatchError):
            self._stats["crc_errors"] += 1
            logger.debug("CRC mismatch (expected=%04X, actual=%04X)", error.expected, error.actual)
        elif isinstance(error, InvalidLengthError):
            self._stats["length_errors"] += 1
            logger.debug("Discarding reply with unexpected length: %s", error)
        else:
            self._stats["protocol_errors"] += 1
            logger.debug("Discarding reply: %s", error)

    def stats(self) -> Dict[str, int]:
        return dict(self._stats)

    def reset(self) -> None:
        for key in self._stats:
            self._stats[key] = 0
