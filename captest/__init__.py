"""
Turn a captured screen or window frame into text (OCR) or an LLM description.
"""

__version__ = "0.1.0"
