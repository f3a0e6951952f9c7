"""Exception hierarchy for stackwright orchestration.

These exceptions provide a domain-specific error surface so callers can catch
a single base error when appropriate, or a specific class when the failure
kind drives control flow.

Exceptions
----------
StackwrightError
ConfigurationError
BackendCommandError
CircularDependencyError
StackNotFoundError

Examples
--------
>>> raise StackNotFoundError("shop", "dev")
Traceback (most recent call last):
...
stackwright._errors.StackNotFoundError: Stack not found: shop/dev
"""

from __future__ import annotations


class StackwrightError(Exception):
    """Base error for stackwright orchestration helpers."""


class ConfigurationError(StackwrightError):
    """Raised when a deployment is misconfigured before any backend call.

    Examples
    --------
    >>> raise ConfigurationError("Missing environment variables: AWS_PROFILE")
    Traceback (most recent call last):
    ...
    stackwright._errors.ConfigurationError: Missing environment variables: AWS_PROFILE
    """


class BackendCommandError(StackwrightError):
    """Raised when the automation backend fails to run an operation.

    Parameters
    ----------
    message
        Human-readable error message describing the failure.
    return_code
        Exit status of the failed command, when one is known.
    """

    def __init__(self, message: str, return_code: int | None = None) -> None:
        super().__init__(message)
        self.return_code = return_code


class CircularDependencyError(StackwrightError):
    """Raised when the stack dependency graph contains a cycle."""

    def __init__(self, stack_name: str | None = None) -> None:
        if stack_name is None:
            message = "Circular dependency detected"
        else:
            message = f"Circular dependency detected involving {stack_name}"
        super().__init__(message)
        self.stack_name = stack_name


class StackNotFoundError(StackwrightError):
    """Raised when an operation targets a stack with no cached handle."""

    def __init__(self, project_name: str, stack_name: str) -> None:
        super().__init__(f"Stack not found: {project_name}/{stack_name}")
        self.project_name = project_name
        self.stack_name = stack_name
