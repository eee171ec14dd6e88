"""
Diagnostics collector for a single file pass.

Collects non-fatal anomalies in the order they are found, without ever
interrupting the pass. A fatal entry marks the pass as cut short; the
partial graph is still returned next to the diagnostics.
"""

import logging
from typing import Iterator, List, Optional, Tuple

from rustgraph_mcp.core.models import Diagnostic, DiagnosticCode, Severity, Span

logger = logging.getLogger(__name__)


class DiagnosticsCollector:
    """
    Ordered list of diagnostics for one file.

    Attributes:
        file_id: File the diagnostics belong to (used in log messages)
    """

    def __init__(self, file_id: str = "<source>"):
        self.file_id = file_id
        self._items: List[Diagnostic] = []

    def record(self, diagnostic: Diagnostic) -> Diagnostic:
        """Append a diagnostic and log it."""
        self._items.append(diagnostic)
        location = f":{diagnostic.span.start_line}" if diagnostic.span else ""
        if diagnostic.fatal:
            logger.warning(f"{self.file_id}{location}: {diagnostic.code} {diagnostic.message}")
        else:
            logger.debug(f"{self.file_id}{location}: {diagnostic.severity} {diagnostic.code} {diagnostic.message}")
        return diagnostic

    def warning(self, code: DiagnosticCode, message: str, span: Optional[Span] = None) -> Diagnostic:
        return self.record(Diagnostic(Severity.WARNING, code, message, span))

    def error(self, code: DiagnosticCode, message: str, span: Optional[Span] = None) -> Diagnostic:
        return self.record(Diagnostic(Severity.ERROR, code, message, span))

    def fatal(self, code: DiagnosticCode, message: str, span: Optional[Span] = None) -> Diagnostic:
        """Record the error that ended the file pass."""
        return self.record(Diagnostic(Severity.ERROR, code, message, span, fatal=True))

    @property
    def has_fatal(self) -> bool:
        return any(d.fatal for d in self._items)

    @property
    def fatal_message(self) -> Optional[str]:
        for diagnostic in self._items:
            if diagnostic.fatal:
                return diagnostic.message
        return None

    @property
    def diagnostics(self) -> Tuple[Diagnostic, ...]:
        return tuple(self._items)

    def count(self, severity: Optional[Severity] = None) -> int:
        if severity is None:
            return len(self._items)
        return sum(1 for d in self._items if d.severity is severity)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(tuple(self._items))
