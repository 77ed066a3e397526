"""Tests for OperationResult."""

from uart_bootloader.core.results import OperationResult


class TestOperationResult:
    """Truthiness, step folding and rendering."""

    def test_error_marks_failure(self):
        result = OperationResult.success("erase", port="COM3")
        assert result
        result.add_error("NACK for erase (command phase)")
        assert not result
        assert result.error == "NACK for erase (command phase)"

    def test_absorb_successful_step(self):
        flash = OperationResult.success("flash")
        step = OperationResult.success("erase", port="COM3", region="0x08008000-0x08020000",
                                       elapsed=1.23456, logs=["erase done"])
        flash.absorb("erase", step)

        assert flash.ok
        assert flash.port == "COM3"
        assert flash.region == "0x08008000-0x08020000"
        assert flash.metadata["erase_time"] == 1.235
        assert flash.logs == ["erase done"]

    def test_absorb_failed_step_carries_disconnect(self):
        flash = OperationResult.success("flash")
        step = OperationResult.failure("write_firmware", "Connection to COM3 lost", port="COM3")
        step.metadata["disconnected"] = True
        flash.absorb("write", step)

        assert not flash.ok
        assert flash.error == "write failed: Connection to COM3 lost"
        assert flash.disconnected

    def test_summary_and_dict(self):
        result = OperationResult.success("read_memory", port="COM3", bytes_len=4096, data=b"\x01\x02")
        result.add_warning("slow link")

        summary = result.to_summary()
        assert summary.splitlines()[0] == "[SUCCESS] read_memory"
        assert "  Bytes: 4,096" in summary
        assert "    - slow link" in summary

        as_dict = result.to_dict()
        assert as_dict["data"] == "0102"
        assert as_dict["warnings"] == ["slow link"]
