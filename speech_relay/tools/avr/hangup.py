"""Ends the current call through the AMI bridge."""

import logging

import aiohttp

from speech_relay.config.constants import LOGGER_NAME, RESPONSE_TYPE_TOOL_RESPONSE
from speech_relay.tools.avr import post_ami

logger = logging.getLogger(LOGGER_NAME)

NAME = "avrHangup"
DESCRIPTION = "Ends the conversation"
PARAMETERS = []


async def handler(caller_id, parameters):
    logger.info(f"Hangup call {caller_id}")
    try:
        data = await post_ami("hangup", {"uuid": caller_id})
    except aiohttp.ClientError as e:
        logger.error(f"Error during hangup: {e}")
        return f"Error during hangup: {e}"

    return {
        "responseText": data.get("message", ""),
        "responseType": RESPONSE_TYPE_TOOL_RESPONSE,
    }
