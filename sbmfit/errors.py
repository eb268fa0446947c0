"""Error taxonomy for the inference engine."""

from __future__ import annotations


class SBMError(Exception):
    """Base class for every error raised by sbmfit."""


class StructuralError(SBMError, RuntimeError):
    """Malformed hierarchy or an illegal move/merge.

    Always fatal to the current run; the state is never repaired.
    """


class ConfigurationError(SBMError, ValueError):
    """Invalid parameters, raised before any state is mutated."""


class NetworkValidationError(SBMError, ValueError):
    """Edge or node input that cannot form a network."""
