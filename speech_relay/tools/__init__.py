"""
Tools exposed to the speech-to-speech backend.

- registry: ``ToolRegistration`` and the read-only ``ToolRegistry``
- loader: discovery of built-in and directory tool modules
- remote: temporary tool selection and durable tool registration
- avr: built-in AMI bridge tools (hangup, transfer)
"""

from speech_relay.tools.registry import ToolRegistration, ToolRegistry
