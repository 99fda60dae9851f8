"""
postmedia — media ingestion pipeline for user-uploaded post attachments.

Accepts an uploaded image or video, enforces the size and duration
policy, and produces a normalized asset (final file + thumbnail).
"""

__version__ = "0.3.0"
