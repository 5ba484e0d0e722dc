"""Hugging Face Spaces entry point; Spaces serves the module-level ``demo``."""
from __future__ import annotations

import logging

from scripts.gradio_app import app

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

# progress is streamed from an async generator, which needs the queue
demo = app().queue()
