"""
Execution of backend tool invocations.

Every invocation the backend sends is answered with exactly one
``client_tool_result`` message carrying the invocation id, whether the tool
succeeded, was not found, failed, or returned a value of the wrong shape.
Tool failures are reported to the backend and never end the call.
"""

import inspect
import logging

from speech_relay.config.constants import LOGGER_NAME
from speech_relay.errors import ToolExecutionError, ToolResolutionError, TransportError
from speech_relay.models.tool_results import (
    ToolFailure,
    ToolInvocation,
    ToolOutcome,
    normalize_tool_result,
)
from speech_relay.tools.registry import ToolRegistry

logger = logging.getLogger(LOGGER_NAME)


class ToolDispatcher:
    """
    Runs tool handlers for one call and sends their results over its channel.

    Invocations are independent: results of concurrent invocations are sent
    in completion order, not in the order the invocations arrived.
    """

    def __init__(self, registry: ToolRegistry, channel):
        self.registry = registry
        self.channel = channel

    async def execute(self, caller_id: str, invocation: ToolInvocation) -> ToolOutcome:
        """
        Resolve and run the handler, converting every failure into a ToolFailure.

        Args:
            caller_id: Caller identifier passed to the handler
            invocation: The invocation to run

        Returns:
            The normalized outcome
        """
        try:
            handler = self.registry.require(invocation.tool_name)
        except ToolResolutionError as e:
            logger.warning(f"[{caller_id}] {e}")
            return ToolFailure.undefined(str(e))

        logger.info(f"[{caller_id}] Running tool {invocation.tool_name} ({invocation.invocation_id})")
        try:
            value = handler(caller_id, dict(invocation.parameters))
            if inspect.isawaitable(value):
                value = await value
        except Exception as e:
            error = ToolExecutionError(invocation.tool_name, e)
            logger.error(f"[{caller_id}] Tool {invocation.tool_name} failed: {error}", exc_info=True)
            return ToolFailure.implementation(str(error))

        outcome = normalize_tool_result(value)
        if isinstance(outcome, ToolFailure):
            logger.error(
                f"[{caller_id}] Tool {invocation.tool_name} returned an invalid result: {value!r}"
            )
        return outcome

    async def dispatch(self, caller_id: str, invocation: ToolInvocation) -> ToolOutcome:
        """
        Run an invocation and send its single result message.

        Returns:
            The outcome that was sent (or attempted, if the channel is gone)
        """
        outcome = await self.execute(caller_id, invocation)
        await self._send(caller_id, invocation.invocation_id, outcome)
        return outcome

    async def reject(self, caller_id: str, invocation_id: str, detail: str) -> ToolOutcome:
        """Answer a malformed invocation with an implementation error instead of running it."""
        outcome = ToolFailure.implementation(f"Invalid tool invocation: {detail}")
        await self._send(caller_id, invocation_id, outcome)
        return outcome

    async def _send(self, caller_id: str, invocation_id: str, outcome: ToolOutcome) -> None:
        message = outcome.to_message(invocation_id)
        try:
            await self.channel.send_message(message)
            logger.debug(f"[{caller_id}] Sent tool result for {invocation_id}")
        except TransportError as e:
            logger.warning(f"[{caller_id}] Could not deliver result for {invocation_id}: {e}")
