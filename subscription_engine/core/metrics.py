"""
In-process billing counters, exported in Prometheus text format at /metrics.

Counters are process-local and reset on restart; they exist for dashboards
and tests, not for accounting.
"""

from __future__ import annotations

import threading
from typing import Dict, Iterable, List, Optional, Tuple

LabelKey = Tuple[str, ...]


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


class Counter:
    """Monotonic counter with a fixed label schema."""

    def __init__(self, name: str, label_names: Optional[Iterable[str]] = None, help_text: str = ""):
        self.name = name
        self.label_names = tuple(label_names or ())
        self.help_text = help_text
        self._samples: Dict[LabelKey, float] = {}
        self._lock = threading.Lock()

    def _key(self, labels: Optional[Dict[str, str]]) -> LabelKey:
        labels = labels or {}
        return tuple(str(labels.get(name, "")) for name in self.label_names)

    def inc(self, labels: Optional[Dict[str, str]] = None, amount: float = 1.0) -> None:
        key = self._key(labels)
        with self._lock:
            self._samples[key] = self._samples.get(key, 0.0) + float(amount)

    def value(self, labels: Optional[Dict[str, str]] = None) -> float:
        key = self._key(labels)
        with self._lock:
            return self._samples.get(key, 0.0)

    def export(self) -> List[str]:
        lines = []
        if self.help_text:
            lines.append(f"# HELP {self.name} {self.help_text}")
        lines.append(f"# TYPE {self.name} counter")
        with self._lock:
            samples = sorted(self._samples.items())
        for key, value in samples:
            if self.label_names:
                rendered = ",".join(f'{n}="{_escape(v)}"' for n, v in zip(self.label_names, key))
                lines.append(f"{self.name}{{{rendered}}} {value}")
            else:
                lines.append(f"{self.name} {value}")
        return lines

    def reset(self) -> None:
        with self._lock:
            self._samples.clear()


class MetricsRegistry:
    def __init__(self):
        self._counters: Dict[str, Counter] = {}
        self._lock = threading.Lock()

    def counter(self, name: str, label_names: Optional[Iterable[str]] = None, help_text: str = "") -> Counter:
        """Get or register a counter by name."""
        with self._lock:
            if name not in self._counters:
                self._counters[name] = Counter(name, label_names, help_text)
            return self._counters[name]

    def export_prometheus(self) -> str:
        with self._lock:
            counters = list(self._counters.values())
        lines: List[str] = []
        for counter in counters:
            lines.extend(counter.export())
        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        with self._lock:
            counters = list(self._counters.values())
        for counter in counters:
            counter.reset()


METRICS = MetricsRegistry()

billing_payments_total = METRICS.counter(
    "billing_payments_total", ["status"], "Charge attempts by outcome."
)
billing_invoices_total = METRICS.counter(
    "billing_invoices_total", ["cycle"], "Invoices issued by billing cycle."
)
subscription_transitions_total = METRICS.counter(
    "subscription_transitions_total", ["transition"], "Subscription lifecycle transitions."
)
