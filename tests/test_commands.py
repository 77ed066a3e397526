"""Tests for the bootloader command state machine."""

from dataclasses import replace

import pytest

from conftest import FAST_TIMINGS

from uart_bootloader.protocol.commands import (
    BootloaderProtocol,
    LengthMismatch,
    ProtocolNack,
    ProtocolTimeout,
    UnexpectedResponse,
    encode_address,
)
from uart_bootloader.protocol.transport import SerialTransport


@pytest.fixture
def protocol(device):
    transport = SerialTransport(timeout=0.1)
    transport.connect("sim://commands", 115200)
    sleeps = []
    proto = BootloaderProtocol(transport, timings=FAST_TIMINGS, on_log=lambda text: None, sleep=sleeps.append)
    proto.sleeps = sleeps
    return proto


def test_encode_address_little_endian():
    assert encode_address(0x08008000) == b"\x00\x80\x00\x08"
    with pytest.raises(ValueError):
        encode_address(0x1_0000_0000)


class TestErase:
    """Erase waits for a single ACK and never retries."""

    def test_erase_acknowledged(self, protocol, device):
        protocol.erase()
        assert device.commands == [0x56]
        assert device.erased == 1

    def test_erase_nack(self, protocol, device):
        device.erase_reply = 0x15
        with pytest.raises(ProtocolNack):
            protocol.erase()
        assert device.commands == [0x56]

    def test_erase_wrong_byte(self, protocol, device):
        device.erase_reply = 0x42
        with pytest.raises(UnexpectedResponse, match="0x42"):
            protocol.erase()

    def test_erase_timeout(self, protocol, device):
        device.mute = True
        with pytest.raises(ProtocolTimeout):
            protocol.erase()

    def test_stale_input_discarded_before_command(self, protocol, device):
        """A leftover ACK from an earlier attempt must not satisfy this one."""
        device.inject(b"\x06")
        device.mute = True
        with pytest.raises(ProtocolTimeout):
            protocol.erase()


class TestWriteBlock:
    """Write-Block is gated by four ACKs."""

    def test_write_block_wire_format(self, protocol, device):
        """Command, LE address, length and one write per payload byte."""
        payload = bytes(range(10))
        protocol.write_block(0x08008000, payload)

        assert device.written_blocks == [(0x08008000, payload)]
        # cmd (1), address (4), length (1), then 10 single-byte writes
        assert device.write_call_sizes == [1, 4, 1] + [1] * 10
        assert device.dump(0x08008000, 10) == payload

    def test_write_block_final_nack(self, protocol, device):
        device.always_nack.add(0x08008080)
        with pytest.raises(ProtocolNack, match="0x08008080"):
            protocol.write_block(0x08008080, b"\x00\x01")

    @pytest.mark.parametrize("phase, sent", [
        ("command", [1]),
        ("address", [1, 4]),
        ("length", [1, 4, 1]),
    ])
    def test_write_block_nack_stops_at_phase(self, protocol, device, phase, sent):
        """A NACK at an early phase ends the attempt; later fields are never sent."""
        device.nack_phase[phase] = 1
        with pytest.raises(ProtocolNack, match=f"{phase} phase"):
            protocol.write_block(0x08008000, b"\x01\x02")

        assert device.write_call_sizes == sent
        assert device.written_blocks == []

    def test_write_block_timeout(self, protocol, device):
        device.mute = True
        with pytest.raises(ProtocolTimeout, match="command phase"):
            protocol.write_block(0x08008000, b"\x00\x01")
        # Aborted at the first phase; nothing else sent
        assert device.write_call_sizes == [1]

    def test_write_block_ack_after_log_line(self, protocol, device):
        logs = []
        protocol.demux.on_log = logs.append
        device.pending_logs = ["flash busy"]

        protocol.write_block(0x08008000, b"\xAA\xBB")
        assert logs == ["flash busy"]
        assert device.written_blocks == [(0x08008000, b"\xAA\xBB")]

    def test_write_block_rejects_bad_sizes(self, protocol, device):
        with pytest.raises(ValueError):
            protocol.write_block(0x08008000, b"")
        with pytest.raises(ValueError):
            protocol.write_block(0x08008000, b"\x00" * 256)
        assert device.commands == []

    def test_write_pacing_applies_configured_delay(self, device):
        transport = SerialTransport(timeout=0.1)
        transport.connect("sim://commands", 115200)
        sleeps = []
        timings = replace(FAST_TIMINGS, write_byte_delay=0.0005)
        proto = BootloaderProtocol(transport, timings=timings, sleep=sleeps.append)

        proto.write_block(0x08008000, b"\x01\x02\x03\x04")
        assert sleeps == [0.0005] * 4


class TestReadBlock:
    """Read-Block returns data verbatim."""

    def test_read_16_bytes_verbatim(self, protocol, device):
        content = bytes([0x00, 0x50, 0x00, 0x20, 0xC1, 0x80, 0x00, 0x08,
                         0x11, 0x22, 0x33, 0x44, 0x55, 0x66, 0x77, 0x88])
        device.load(0x08008000, content)

        data = protocol.read_block(0x08008000, 16)
        assert data == content
        assert device.commands == [0x59]

    def test_read_address_is_paced(self, protocol, device):
        """Address bytes go out one at a time with the inter-byte delay."""
        protocol.read_block(0x08008000, 4)
        assert device.write_call_sizes == [1, 1, 1, 1, 1, 1]
        assert protocol.sleeps == [FAST_TIMINGS.read_byte_delay] * 4

    def test_read_address_nack(self, protocol, device):
        device.nack_phase["address"] = 1
        with pytest.raises(ProtocolNack, match="read at 0x08008000 \\(address phase\\)"):
            protocol.read_block(0x08008000, 4)
        # No length byte after the refused address
        assert device.write_call_sizes == [1, 1, 1, 1, 1]

    def test_short_read_raises_length_mismatch(self, protocol, device):
        device.load(0x08008000, b"\x01" * 8)
        device.short_reads = 3

        with pytest.raises(LengthMismatch) as excinfo:
            protocol.read_block(0x08008000, 8)
        assert excinfo.value.expected == 8
        assert excinfo.value.received == b"\x01" * 5

    def test_read_length_limits(self, protocol):
        with pytest.raises(ValueError):
            protocol.read_block(0x08008000, 0)
        with pytest.raises(ValueError):
            protocol.read_block(0x08008000, 256)

    def test_read_data_containing_bracket(self, protocol, device):
        """Flash data starting with '[' is not mistaken for a log line."""
        device.load(0x08008000, b"[LOG]x\x00\x01")
        assert protocol.read_block(0x08008000, 8) == b"[LOG]x\x00\x01"


class TestJumps:
    """Jump commands are a single byte with no reply."""

    def test_jump_to_application(self, protocol, device):
        protocol.jump_to_application()
        assert device.commands == [0x55]
        assert device.jumps == ["application"]

    def test_jump_to_bootloader(self, protocol, device):
        protocol.jump_to_bootloader()
        assert device.commands == [0x54]
        assert device.jumps == ["bootloader"]
