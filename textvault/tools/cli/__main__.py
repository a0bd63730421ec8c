"""
Entry point of `python -m textvault.tools.cli`.
"""

from .main import app

app()
