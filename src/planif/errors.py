"""Error taxonomy of the scheduling engine.

Every error derives from ``SchedulingError`` (itself a ``ValueError``) so
callers that only care about "the request could not be scheduled" can catch
one type. None of them is retryable: they describe a data or logic problem.
"""

from __future__ import annotations


class SchedulingError(ValueError):
    """Base class for every engine error."""


class NotFound(SchedulingError):
    def __init__(self, kind: str, ident: str):
        self.kind = kind
        self.ident = ident
        super().__init__(f"{kind} {ident} not found")


class InvalidDuration(SchedulingError):
    pass


class StartNotWorking(SchedulingError):
    pass


class Exhausted(SchedulingError):
    pass


class InvalidDependency(SchedulingError):
    pass


class CyclicDependency(SchedulingError):
    """The dependency graph has a cycle; ``edge`` is the edge closing it."""

    def __init__(self, edge: tuple[str, str], cycle: list[tuple[str, str]] | None = None):
        self.edge = edge
        self.cycle = cycle or [edge]
        path = " -> ".join([e[0] for e in self.cycle] + [self.cycle[-1][1]])
        super().__init__(
            f"Circular dependency detected: {path} (closed by {edge[0]} -> {edge[1]})"
        )


class TemplateIntegrity(SchedulingError):
    pass


class DataIntegrity(SchedulingError):
    pass
