"""
TextVault: password-protected, multi-tab text store synchronized through a
realtime backend.
"""

from pyrollup import rollup

from . import core
from .core import *  # noqa

__all__ = rollup(core)
