"""
HTTP API boundary for consult transcription.

Design intent:
- Keep request handling thin; delegate all pipeline logic to `transcription`.
"""
