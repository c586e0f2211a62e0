"""
Error hierarchy

Raised by model definitions, the model engine and data source adapters.

- DefinitionError: invalid model definition (fatal at construction)
- ValidationError: required-ness / type / constraint violation (no I/O happened)
- NotFoundError: primary source has no matching record
- SourceFailureError: every call of a fan-out set failed
- SourcePartialFailureError: some (not all) calls of a fan-out set failed
- InstanceDestroyedError: mutation attempted after destroy
- UnsupportedQueryError: an adapter cannot express the given query
"""
from typing import Any, Dict, List, Optional


class FrankensteinError(Exception):
    """Base class for all errors raised by this package."""
    pass


class DefinitionError(FrankensteinError):
    """Raised when a model definition is invalid."""
    pass


class ValidationError(FrankensteinError):
    """
    Raised when a document violates field rules.

    Carries every violation found, keyed by field name, so callers see the
    whole picture instead of the first problem.
    """

    def __init__(self, errors: Dict[str, List[str]]):
        self.errors = errors
        details = "; ".join(
            f"{field}: {', '.join(messages)}" for field, messages in sorted(errors.items())
        )
        super().__init__(f"Validation failed ({details})")


class NotFoundError(FrankensteinError):
    """Raised when the primary source has no matching record."""

    def __init__(self, model_name: str, key: Any):
        self.model_name = model_name
        self.key = key
        super().__init__(f"{model_name} not found: {key!r}")


class SourceFailureError(FrankensteinError):
    """
    Raised when source calls of a fan-out set failed.

    Attributes:
        failures: source name -> exception raised by that source
        result: whatever could still be produced (instance, list, or None)
    """

    def __init__(self, failures: Dict[str, BaseException], result: Optional[Any] = None):
        self.failures = dict(failures)
        self.result = result
        causes = ", ".join(
            f"{name} ({type(exc).__name__}: {exc})" for name, exc in self.failures.items()
        )
        super().__init__(f"Source calls failed: {causes}")

    @property
    def failed_sources(self) -> List[str]:
        return list(self.failures)


class SourcePartialFailureError(SourceFailureError):
    """
    Raised when one or more, but not all, sources of a fan-out set failed.

    Effects of the sources that succeeded are NOT rolled back.
    """
    pass


class InstanceDestroyedError(FrankensteinError):
    """Raised when a destroyed entity instance is mutated or flushed."""
    pass


class UnsupportedQueryError(FrankensteinError):
    """Raised by an adapter when its store cannot express a query."""
    pass
