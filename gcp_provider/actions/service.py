"""
invokeAction: validate an engine action request and run it.
"""

import logging

from ..credentials import CredentialResolver
from ..models import ActionRequest
from ..returnvalue import ReturnValue, error_value, success_value
from .executor import ActionExecutor

logger = logging.getLogger(__name__)


async def invoke_action(
    request: ActionRequest, resolver: CredentialResolver, executor: ActionExecutor
) -> ReturnValue:
    """
    Run the action named in request.param.

    A script that fails to launch, exits non-zero or times out is an error; its
    stdout/stderr are returned in the detail either way.
    """
    try:
        if not request.active_snap_id:
            return _reject('missing required field "activeSnapId" in request body')
        if not request.param:
            return _reject('missing required field "param" in request body')

        param = request.param
        if not param.get("action"):
            return _reject('missing required parameter "action"')
        project = param.get("project")
        if not project:
            return _reject('missing required parameter "project"')

        resolution = resolver.resolve(project, request.connection_info, param)
        if not resolution.ok:
            return _reject(resolution.error)
        if not resolution.project:
            return _reject("could not find project_id in GCP key information")

        # scripts see the real project, never the default-connection sentinel
        param = {**param, "project": resolution.project}
        result = await executor.invoke(request.active_snap_id, param, resolution.credentials)
        if result.is_error:
            detail = {"kind": "timeout" if result.timed_out else "execution", **result.to_dict()}
            logger.error(f"invokeAction: action {param['action']} failed: {result.error}")
            return error_value(str(result.error), detail)

        return success_value(result.to_dict())

    except Exception as e:
        logger.exception("invokeAction: caught exception")
        return error_value(str(e))


def _reject(message: str) -> ReturnValue:
    logger.error(f"invokeAction: {message}")
    return error_value(message)
