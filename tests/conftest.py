"""Shared fixtures: a simulated bootloader behind a fake serial port."""

import threading
import time

import pytest
import serial

from uart_bootloader.config import ProtocolTimings
from uart_bootloader.engine import BootloaderEngine

ACK = 0x06
NACK = 0x15

FAST_TIMINGS = ProtocolTimings(
    ack_timeout=0.1,
    write_ack_timeout=0.1,
    erase_timeout=0.2,
    log_header_timeout=0.02,
    log_line_timeout=0.1,
    read_byte_delay=0.0,
    chunk_delay=0.0,
    retry_delay=0.0,
    serial_timeout=0.1,
    jump_delay=0.0,
    monitor_interval=0.005,
)


class SimulatedBootloader:
    """
    Serial-port stand-in that behaves like the device-side bootloader.

    Implements the subset of serial.Serial the transport uses. Replies are
    queued the moment the host writes the byte that triggers them.

    Knobs:
        nack_writes: {address: n} NACK the data phase of the first n
            write attempts at that address
        always_nack: addresses whose data phase is always NACKed
        nack_phase: {"command" | "address" | "length": n} NACK that phase
            of the next n write/read transactions and return to idle
        mute: never reply to anything
        erase_reply: byte sent after the erase command
        short_reads: number of bytes to drop from read replies
        pending_logs: log lines emitted ahead of the next reply
    """

    def __init__(self):
        self.is_open = True
        self.timeout = None
        self.rx = bytearray()
        self._rx_lock = threading.Lock()

        self.flash = {}
        self.commands = []
        self.write_attempts = []
        self.written_blocks = []
        self.write_call_sizes = []
        self.jumps = []
        self.erased = 0
        self.resets = 0

        self.nack_writes = {}
        self.always_nack = set()
        self.nack_phase = {}
        self.mute = False
        self.erase_reply = ACK
        self.short_reads = 0
        self.pending_logs = []
        self.fail_io = False

        self._state = "idle"
        self._buf = bytearray()
        self._address = 0
        self._length = 0

    # serial.Serial interface

    def _check(self):
        if self.fail_io:
            raise serial.SerialException("device reports readiness to read but returned no data")

    def write(self, data):
        self._check()
        self.write_call_sizes.append(len(data))
        for byte in bytes(data):
            self._feed(byte)
        return len(data)

    def read(self, size=1):
        self._check()
        with self._rx_lock:
            if self.rx:
                out = bytes(self.rx[:size])
                del self.rx[:size]
                return out
        time.sleep(min(self.timeout or 0, 0.002))
        return b""

    def read_until(self, expected=b"\n", size=None):
        self._check()
        out = bytearray()
        with self._rx_lock:
            while self.rx:
                out.append(self.rx.pop(0))
                if out.endswith(expected):
                    break
        return bytes(out)

    @property
    def in_waiting(self):
        self._check()
        return len(self.rx)

    def reset_input_buffer(self):
        self._check()
        self.resets += 1
        with self._rx_lock:
            self.rx.clear()

    def close(self):
        self.is_open = False

    # Test helpers

    def inject(self, data: bytes) -> None:
        """Bytes the device sends unprompted."""
        with self._rx_lock:
            self.rx.extend(data)

    def load(self, address: int, data: bytes) -> None:
        for i, byte in enumerate(data):
            self.flash[address + i] = byte

    def dump(self, address: int, length: int) -> bytes:
        return bytes(self.flash.get(address + i, 0xFF) for i in range(length))

    # Device side

    def _reply(self, payload: bytes) -> None:
        if self.mute:
            return
        out = bytearray()
        for line in self.pending_logs:
            out += b"[LOG] " + line.encode() + b"\n"
        self.pending_logs = []
        out += payload
        self.inject(bytes(out))

    def _phase_nacked(self, phase: str) -> bool:
        remaining = self.nack_phase.get(phase, 0)
        if remaining <= 0:
            return False
        self.nack_phase[phase] = remaining - 1
        self._state = "idle"
        self._reply(bytes([NACK]))
        return True

    def _feed(self, byte: int) -> None:
        state = self._state
        if state == "idle":
            self.commands.append(byte)
            if byte == 0x56:
                self.erased += 1
                self.flash.clear()
                self._reply(bytes([self.erase_reply]))
            elif byte in (0x57, 0x59):
                if self._phase_nacked("command"):
                    return
                self._state = "write_addr" if byte == 0x57 else "read_addr"
                self._buf = bytearray()
                self._reply(bytes([ACK]))
            elif byte == 0x55:
                self.jumps.append("application")
            elif byte == 0x54:
                self.jumps.append("bootloader")
            else:
                self._reply(bytes([NACK]))
        elif state in ("write_addr", "read_addr"):
            self._buf.append(byte)
            if len(self._buf) == 4:
                self._address = int.from_bytes(self._buf, "little")
                if self._phase_nacked("address"):
                    return
                self._state = "write_len" if state == "write_addr" else "read_len"
                self._reply(bytes([ACK]))
        elif state == "write_len":
            if self._phase_nacked("length"):
                return
            self._length = byte
            self._buf = bytearray()
            self._state = "write_data"
            self._reply(bytes([ACK]))
        elif state == "write_data":
            self._buf.append(byte)
            if len(self._buf) == self._length:
                self._state = "idle"
                self._finish_write(self._address, bytes(self._buf))
        elif state == "read_len":
            if self._phase_nacked("length"):
                return
            self._state = "idle"
            data = self.dump(self._address, byte)
            if self.short_reads:
                data = data[:-self.short_reads]
            self._reply(bytes([ACK]) + data)

    def _finish_write(self, address: int, data: bytes) -> None:
        self.write_attempts.append(address)
        remaining = self.nack_writes.get(address, 0)
        if address in self.always_nack or remaining > 0:
            self.nack_writes[address] = max(remaining - 1, 0)
            self._reply(bytes([NACK]))
            return
        self.load(address, data)
        self.written_blocks.append((address, data))
        self._reply(bytes([ACK]))


@pytest.fixture
def device(monkeypatch):
    """Simulated bootloader returned by every serial.serial_for_url call."""
    sim = SimulatedBootloader()
    opened = []

    def fake_serial_for_url(url, **kwargs):
        opened.append((url, kwargs))
        sim.is_open = True
        return sim

    monkeypatch.setattr(serial, "serial_for_url", fake_serial_for_url)
    sim.opened = opened
    return sim


@pytest.fixture
def engine(device):
    """Engine connected to the simulated bootloader, with fast timings."""
    eng = BootloaderEngine(timings=FAST_TIMINGS, sleep=lambda seconds: None)
    eng.connect("sim://bootloader", 115200)
    yield eng
    eng.close()
