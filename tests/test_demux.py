"""Tests for separating device log lines from protocol bytes."""

from uart_bootloader.protocol.demux import LogDemultiplexer
from uart_bootloader.protocol.transport import SerialTransport


def _demux(device, logs):
    transport = SerialTransport(timeout=0.1)
    transport.connect("sim://demux", 115200)
    return LogDemultiplexer(transport, on_log=logs.append, header_timeout=0.02, line_timeout=0.1)


class TestLogLines:
    """Confirmed log lines are diverted, protocol bytes pass through."""

    def test_log_line_before_ack(self, device):
        """'[LOG] hello\\n' then ACK: one log line, ACK delivered untouched."""
        logs = []
        demux = _demux(device, logs)
        device.inject(b"[LOG] hello\n\x06")

        assert demux.read_bytes(1, timeout=0.2) == b"\x06"
        assert logs == ["hello"]

    def test_consecutive_log_lines_keep_order(self, device):
        logs = []
        demux = _demux(device, logs)
        device.inject(b"[LOG] erase start\r\n[LOG] erase done\r\n\x06")

        assert demux.read_byte(0.2) == 0x06
        assert logs == ["erase start", "erase done"]

    def test_undecodable_log_text_is_replaced(self, device):
        logs = []
        demux = _demux(device, logs)
        device.inject(b"[LOG] temp \xff\xfe C\n\x15")

        assert demux.read_byte(0.2) == 0x15
        assert len(logs) == 1
        assert logs[0].startswith("temp ")
        assert "�" in logs[0]


class TestFalsePositives:
    """A '[' that does not start a log header is ordinary data."""

    def test_mismatched_header_is_restored_in_order(self, device):
        """'[XYZAB' + ACK comes out byte for byte, nothing lost or reordered."""
        logs = []
        demux = _demux(device, logs)
        device.inject(b"[XYZAB\x06")

        assert demux.read_bytes(7, timeout=0.2) == b"[XYZAB\x06"
        assert logs == []

    def test_single_byte_reads_follow_original_order(self, device):
        logs = []
        demux = _demux(device, logs)
        device.inject(b"[XYZAB\x06")

        got = [demux.read_byte(0.2) for _ in range(7)]
        assert bytes(got) == b"[XYZAB\x06"

    def test_truncated_header_is_restored(self, device):
        """A header cut short by the timeout is pushed back as data."""
        logs = []
        demux = _demux(device, logs)
        device.inject(b"[LO")

        assert demux.read_bytes(3, timeout=0.2) == b"[LO"
        assert logs == []

    def test_queued_bytes_served_before_new_input(self, device):
        logs = []
        demux = _demux(device, logs)
        device.inject(b"[ABCDE")
        assert demux.read_byte(0.2) == ord("[")
        assert demux.pending == 5

        device.inject(b"\x06")
        assert demux.read_bytes(6, timeout=0.2) == b"ABCDE\x06"

    def test_clear_discards_queued_bytes(self, device):
        logs = []
        demux = _demux(device, logs)
        device.inject(b"[ABCDE")
        demux.read_byte(0.2)

        demux.clear()
        assert demux.pending == 0
        assert demux.read_byte(0.02) is None


class TestTimeouts:
    """Multi-byte reads return what arrived instead of raising."""

    def test_read_bytes_timeout_returns_partial(self, device):
        logs = []
        demux = _demux(device, logs)
        device.inject(b"\x01\x02")

        assert demux.read_bytes(4, timeout=0.05) == b"\x01\x02"

    def test_read_bytes_timeout_returns_empty(self, device):
        logs = []
        demux = _demux(device, logs)
        assert demux.read_bytes(1, timeout=0.02) == b""
        assert demux.read_byte(0.02) is None
