"""
Provider actions.

Each action is a shell script in scripts/ named after the action. The
executor prepares the environment and runs the script; the scripts do the
actual gcloud work.
"""

from .executor import ActionExecutor, MissingParameterError, UnknownActionError
from .service import invoke_action
from .runner import (
    ActionError,
    ActionFailedError,
    ActionTimeoutError,
    ExecutionResult,
    ScriptRunner,
)

__all__ = [
    "ActionExecutor",
    "ActionError",
    "ActionFailedError",
    "ActionTimeoutError",
    "ExecutionResult",
    "MissingParameterError",
    "ScriptRunner",
    "UnknownActionError",
    "invoke_action",
]
