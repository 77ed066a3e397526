"""
Result objects for engine operations.

Every caller-facing operation reports through OperationResult. Protocol
exceptions are turned into ``errors`` entries so front ends never need
to know the exception taxonomy.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class OperationResult:
    """
    Outcome of one engine operation.

    Attributes:
        ok: False as soon as any error is recorded
        operation: Operation name ("erase", "write_firmware", "flash", ...)
        port: Serial port the operation ran against
        region: Address range touched, e.g. "0x08008000-0x08008400"
        bytes_len: Bytes written, verified or read
        data: Payload of read operations
        elapsed: Wall-clock duration in seconds
        warnings: Conditions worth reporting that did not stop the operation
        errors: Failures, first one is the cause
        metadata: Step timings, block counts, disconnect marker
        logs: Device log lines seen while the operation held the port
    """
    ok: bool
    operation: str
    port: str = ""
    region: str = ""
    bytes_len: int = 0
    data: bytes = b""
    elapsed: float = 0.0
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    logs: List[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.ok

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def add_error(self, message: str) -> None:
        """Record a failure; the result is no longer ok."""
        self.errors.append(message)
        self.ok = False

    @property
    def error(self) -> str:
        """First error message, or empty string."""
        return self.errors[0] if self.errors else ""

    @property
    def disconnected(self) -> bool:
        return bool(self.metadata.get("disconnected"))

    def absorb(self, step: str, other: "OperationResult") -> None:
        """
        Fold the result of one step of a composite operation into this one.

        Logs and warnings are carried over, the step duration is stored as
        ``<step>_time`` and a failed step becomes this result's error.
        """
        self.logs.extend(other.logs)
        self.warnings.extend(other.warnings)
        self.metadata[f"{step}_time"] = round(other.elapsed, 3)
        self.port = other.port or self.port
        if other.region:
            self.region = other.region
        if not other.ok:
            self.add_error(f"{step} failed: {other.error}")
            if other.disconnected:
                self.metadata["disconnected"] = True

    def to_summary(self) -> str:
        """Multi-line report for terminals and log files."""
        lines = [f"[{'SUCCESS' if self.ok else 'FAILED'}] {self.operation}"]
        for label, value in (
            ("Port", self.port),
            ("Region", self.region),
            ("Bytes", f"{self.bytes_len:,}" if self.bytes_len else ""),
            ("Time", f"{self.elapsed:.2f}s" if self.elapsed else ""),
            ("Device log lines", str(len(self.logs)) if self.logs else ""),
        ):
            if value:
                lines.append(f"  {label}: {value}")

        for heading, entries in (("Warnings", self.warnings), ("Errors", self.errors)):
            if entries:
                lines.append(f"  {heading}:")
                lines.extend(f"    - {entry}" for entry in entries)
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly view; ``data`` is hex encoded."""
        return {
            "ok": self.ok,
            "operation": self.operation,
            "port": self.port,
            "region": self.region,
            "bytes_len": self.bytes_len,
            "data": self.data.hex(),
            "elapsed": round(self.elapsed, 3),
            "warnings": list(self.warnings),
            "errors": list(self.errors),
            "metadata": dict(self.metadata),
            "logs": list(self.logs),
        }

    @classmethod
    def success(cls, operation: str, **kwargs) -> "OperationResult":
        return cls(ok=True, operation=operation, **kwargs)

    @classmethod
    def failure(cls, operation: str, error: str, **kwargs) -> "OperationResult":
        result = cls(ok=False, operation=operation, **kwargs)
        result.errors.append(error)
        return result
