"""
OmniStudio companion.

Generation job polling and per-tool chat history reconciliation for the
AI Studio REST API, as a library, a FastAPI sidecar and a CLI.
"""

__version__ = "0.3.0"
