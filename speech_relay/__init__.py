"""
Speech relay: bridges a caller's chunked HTTP audio stream to a cloud
speech-to-speech agent over a per-call WebSocket, and answers the agent's
tool invocations with locally registered handlers.
"""
