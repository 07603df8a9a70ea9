"""Screenshot-driven phone agent: capture, ask a VLM, act, repeat."""

__version__ = "0.1.0"
