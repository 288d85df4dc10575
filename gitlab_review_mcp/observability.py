import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class ToolMetrics:
    calls: int = 0
    errors: int = 0
    total_latency_ms: float = 0.0
    error_codes: Dict[str, int] = field(default_factory=dict)

    def observe(self, duration_ms: float, error_code: Optional[str]) -> None:
        self.calls += 1
        self.total_latency_ms += float(duration_ms)
        if error_code:
            self.errors += 1
            self.error_codes[error_code] = self.error_codes.get(error_code, 0) + 1

    @property
    def avg_latency_ms(self) -> float:
        if self.calls == 0:
            return 0.0
        return self.total_latency_ms / self.calls


class InMemoryMetrics:
    """Per-tool call counters; lives as long as the server process."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tools: Dict[str, ToolMetrics] = {}

    def record(self, tool: str, duration_ms: float, error_code: Optional[str] = None) -> None:
        with self._lock:
            metrics = self._tools.get(tool)
            if metrics is None:
                metrics = ToolMetrics()
                self._tools[tool] = metrics
            metrics.observe(duration_ms, error_code)

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            data: Dict[str, Dict[str, Any]] = {}
            for name, m in self._tools.items():
                data[name] = {
                    "calls": m.calls,
                    "errors": m.errors,
                    "avg_latency_ms": round(m.avg_latency_ms, 3),
                    "error_codes": dict(m.error_codes),
                }
            return data
