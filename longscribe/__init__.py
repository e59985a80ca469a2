"""
Longscribe - long-form audio transcription with context carry-over.

Splits a long recording into overlapping windows, transcribes each window
with a generative model while threading a running context summary from one
window to the next, and stitches the timestamped lines into a single SRT
timeline that can be resumed after a failed window.
"""

__version__ = "0.1.0"
