"""Built-in tools that drive the Asterisk AMI bridge over HTTP."""

import logging
import os
from typing import Any, Dict

import aiohttp

from speech_relay.config.constants import DEFAULT_AMI_URL, HTTP_TIMEOUT, LOGGER_NAME

logger = logging.getLogger(LOGGER_NAME)


def ami_url() -> str:
    return (os.getenv("AMI_URL") or DEFAULT_AMI_URL).rstrip("/")


async def post_ami(action: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    POST a command to the AMI bridge and return its JSON body.

    Raises:
        aiohttp.ClientError: If the request fails or the bridge answers with an error status
    """
    url = f"{ami_url()}/{action}"
    logger.info(f"AMI {action} request to {url}: {payload}")
    async with aiohttp.ClientSession() as session:
        async with session.post(
            url,
            json=payload,
            timeout=aiohttp.ClientTimeout(total=HTTP_TIMEOUT),
        ) as response:
            response.raise_for_status()
            data = await response.json()
    logger.info(f"AMI {action} response: {data}")
    return data
