"""
longscribe.llm - Generative transcription client.

Pipeline Stage 2: Send one audio window plus instructions and the running
context summary to the model, stream the reply, and parse it into
timestamped lines and an updated summary.
"""

from __future__ import annotations
