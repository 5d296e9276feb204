"""
Action executor.

Turns an engine action request into a script invocation:
- Action name to script routing ({action}.sh in the actions directory)
- Child environment construction
- Result capture
"""

import json
import logging
import re
from pathlib import Path
from typing import Any

from ..credentials import ServiceCredentials
from .runner import ActionError, ExecutionResult, ScriptRunner, base_environment

logger = logging.getLogger(__name__)

ENV_PREFIX = "SM_"
ACTIVE_SNAP_ID_VAR = "ACTIVESNAPID"
SERVICE_CREDS_VAR = "SERVICECREDS"

ACTION_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")
ENV_KEY_PATTERN = re.compile(r"[^A-Z0-9_]")


class MissingParameterError(ActionError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f'missing required parameter "{name}"')


class UnknownActionError(ActionError):
    def __init__(self, action: str):
        self.action = action
        super().__init__(f'unknown action "{action}"')


def env_key(key: str) -> str:
    """Map a param key to its environment variable name, e.g. 'image' -> 'SM_IMAGE'."""
    return ENV_PREFIX + ENV_KEY_PATTERN.sub("_", key.upper())


def env_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value)


class ActionExecutor:
    """
    Execute provider actions as external scripts.

    The executor does not interpret what a script does; it only prepares the
    environment, runs the script and hands back what came out.
    """

    def __init__(
        self,
        actions_dir: Path,
        timeout: float = 600.0,
        excluded_params: tuple[str, ...] = (),
        runner: ScriptRunner | None = None,
    ):
        """
        Args:
            actions_dir: Directory holding the {action}.sh scripts.
            timeout: Maximum script execution time in seconds.
            excluded_params: Param keys never copied into the environment
                (credential entities travel only as SERVICECREDS).
            runner: Script runner, mainly for tests.
        """
        self.actions_dir = Path(actions_dir)
        self.excluded_params = excluded_params
        self.runner = runner or ScriptRunner(timeout=timeout)

    def script_path(self, action: str) -> Path:
        return self.actions_dir / f"{action}.sh"

    def build_environment(
        self, active_snap_id: str, param: dict, credentials: ServiceCredentials
    ) -> dict[str, str]:
        env = base_environment()
        for key, value in param.items():
            if key in self.excluded_params or value is None:
                continue
            env[env_key(key)] = env_value(value)
        env[ACTIVE_SNAP_ID_VAR] = active_snap_id
        env[SERVICE_CREDS_VAR] = credentials.serialize()
        return env

    async def invoke(
        self, active_snap_id: str, param: dict, credentials: ServiceCredentials
    ) -> ExecutionResult:
        """
        Run the script for param["action"].

        Args:
            active_snap_id: The active snap the action runs on behalf of.
            param: Action parameters, exported to the script as SM_* variables.
            credentials: Service credentials, exported as SERVICECREDS.

        Returns:
            ExecutionResult. Never raises; failures are carried in result.error.
        """
        action = param.get("action")
        if not action:
            return ExecutionResult(error=MissingParameterError("action"), stdout="", stderr="")
        if not param.get("project"):
            return ExecutionResult(error=MissingParameterError("project"), stdout="", stderr="")
        if not isinstance(action, str) or not ACTION_NAME_PATTERN.match(action):
            return ExecutionResult(error=UnknownActionError(str(action)), stdout="", stderr="")

        script = self.script_path(action)
        if not script.is_file():
            logger.error(f"No script for action {action} in {self.actions_dir}")
            return ExecutionResult(error=UnknownActionError(action), stdout="", stderr="")

        try:
            env = self.build_environment(active_snap_id, param, credentials)
            logger.info(
                f"Executing action {action} in project {param['project']} "
                f"(active snap {active_snap_id}, service credentials present)"
            )
            result = await self.runner.run(script, env)
        except Exception as e:
            logger.exception(f"Action {action} failed to execute")
            return ExecutionResult(error=e, stdout="", stderr=f"Execution error: {e}")

        logger.info(f"Finished executing action {action}: exit code {result.exit_code}")
        return result
