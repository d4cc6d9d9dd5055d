"""Chunked freehand-annotation signaling for shared video calls."""
