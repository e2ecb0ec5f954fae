#!/usr/bin/env python3
"""
captest
Captures a screen or window, then saves it as JPEG, extracts its text with
PaddleOCR and/or describes it with a vision-capable LLM.
"""

from captest.cli import run

if __name__ == "__main__":
    run()
