"""
longscribe.export - Subtitle export.

Pipeline Stage 4: Serialize the reconciled timeline as SubRip (.srt).
"""

from __future__ import annotations
