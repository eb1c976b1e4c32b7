"""
HTTP surface for the transcript services and the trials search.

Design intent:
- Expose thin, typed endpoints for transcribe/format/extract/key-moments/trials.
- Keep request validation explicit and failure payloads predictable.
"""
