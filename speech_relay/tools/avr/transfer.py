"""Transfers the current call to another extension through the AMI bridge."""

import logging

import aiohttp

from speech_relay.config.constants import LOGGER_NAME
from speech_relay.tools.avr import post_ami

logger = logging.getLogger(LOGGER_NAME)

NAME = "avrTransfer"
DESCRIPTION = "Transfers a call to a specific extension."
PARAMETERS = [
    {
        "name": "transfer_extension",
        "location": "PARAMETER_LOCATION_BODY",
        "schema": {
            "type": "integer",
            "description": "The transfer extension to transfer the call to.",
        },
        "required": True,
    },
    {
        "name": "transfer_context",
        "location": "PARAMETER_LOCATION_BODY",
        "schema": {
            "type": "string",
            "description": "The context to transfer the call to.",
        },
    },
    {
        "name": "transfer_priority",
        "location": "PARAMETER_LOCATION_BODY",
        "schema": {
            "type": "integer",
            "description": "The priority of the transfer.",
        },
    },
]

DEFAULT_CONTEXT = "demo"
DEFAULT_PRIORITY = 1


async def handler(caller_id, parameters):
    extension = parameters.get("transfer_extension")
    context = parameters.get("transfer_context") or DEFAULT_CONTEXT
    priority = parameters.get("transfer_priority") or DEFAULT_PRIORITY
    logger.info(f"Transferring call {caller_id} to {extension}@{context} (priority {priority})")

    try:
        data = await post_ami(
            "transfer",
            {"uuid": caller_id, "exten": extension, "context": context, "priority": priority},
        )
    except aiohttp.ClientError as e:
        logger.error(f"Error during transfer: {e}")
        return f"Error during transfer: {e}"

    return data.get("message", "")
