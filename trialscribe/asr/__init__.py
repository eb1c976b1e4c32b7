"""
Capture and transcript-shaping boundary.

Design intent:
- Keep microphone capture strategies behind one selector.
- Keep turn parsing and speaker labels deterministic for display.
"""
