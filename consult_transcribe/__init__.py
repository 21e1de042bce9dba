"""
Consult transcription service package.

Design intent:
- Make long clinical recordings transcribable through size-capped providers.
- Keep domain modules (transcription/internal_core) independent from the HTTP surface.
"""
