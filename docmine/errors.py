"""docmine error hierarchy.

All project exceptions inherit from DocmineError, enabling:
- ``except DocmineError`` at top-level boundaries (CLI, scheduler ticks)
- Fine-grained catches deeper in the stack (``except TransientModelError``)

Hierarchy:
    DocmineError
    ├── ConfigError                 # invalid pipeline/processor configuration
    │   └── StepConfigError         # a single step rejected its config
    ├── DatabaseError               # storage layer
    ├── MissingDependencyError      # a step lacks a required service handle
    └── ModelInvocationError        # model call failed
        ├── TransientModelError     # empty output, malformed JSON, network/rate-limit
        └── SchemaValidationError   # well-formed JSON that does not match the schema

Transient errors are the only ones eligible for retry inside the model
invocation service. Everything else surfaces immediately.
"""

from __future__ import annotations


class DocmineError(Exception):
    """Base class for all docmine errors."""


class ConfigError(DocmineError):
    """Raised when a configuration file or value is invalid."""


class StepConfigError(ConfigError):
    """Raised when a step's configuration fails validation or its type is unknown."""

    def __init__(self, message: str, *, step_id: str | None = None, step_type: str | None = None) -> None:
        super().__init__(message)
        self.step_id = step_id
        self.step_type = step_type


class DatabaseError(DocmineError):
    """Base class for database errors."""


class MissingDependencyError(DocmineError):
    """A step was executed without a service it requires."""


class ModelInvocationError(DocmineError):
    """A call to the generative model failed.

    ``transient`` tells retry logic whether the same request may succeed
    if attempted again.
    """

    transient: bool = False

    def __init__(self, message: str, *, transient: bool | None = None) -> None:
        super().__init__(message)
        if transient is not None:
            self.transient = transient


class TransientModelError(ModelInvocationError):
    """Empty response, malformed JSON, rate limit or network failure."""

    transient = True


class SchemaValidationError(ModelInvocationError):
    """The model returned valid JSON that does not satisfy the response schema."""

    transient = False

    def __init__(self, message: str, *, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


__all__ = [
    "ConfigError",
    "DatabaseError",
    "DocmineError",
    "MissingDependencyError",
    "ModelInvocationError",
    "SchemaValidationError",
    "StepConfigError",
    "TransientModelError",
]
