"""
TrialScribe backend package.

Design intent:
- Turn a clinical conversation into a formatted transcript, a patient profile,
  key moments and matching clinical trials.
- Keep domain modules (asr/extraction/pipeline/trials) independent from the
  HTTP surface in `api`.
"""
