"""Error taxonomy shared by the wizard, controller and chat layer.

Only ValidationError (and its subclasses) is meant to reach the operator
verbatim.  Provider and classifier errors are logged by the controller and
never end a running task.
"""
from __future__ import annotations


class ValidationError(ValueError):
    """Bad operator input or a stale/out-of-order event.  No state was changed."""


class TaskAlreadyRunning(ValidationError):
    """A second automation task was requested while one is active."""


class ProviderError(RuntimeError):
    """Create / list / delete / wait-ready failure or timeout."""


class ClassifierError(RuntimeError):
    """The purity oracle could not classify an address."""
