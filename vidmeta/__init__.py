"""Supplementary video metadata for feed entries: durations, thumbnails, descriptions and captions."""

__version__ = "0.3.0"
