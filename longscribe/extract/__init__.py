"""
longscribe.extract - Audio decoding and segmentation.

Pipeline Stage 1: Decode the recording with FFmpeg, resample to 16kHz
mono and split it into overlapping windows, each encoded as WAV.
"""

from __future__ import annotations
