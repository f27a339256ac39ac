from __future__ import annotations


class DispatchError(Exception):
    """Base class for errors raised out of the planning engine."""


class PreconditionError(DispatchError):
    """A caller broke the engine's contract (unknown ids, jobs outside the assignment, ...)."""
