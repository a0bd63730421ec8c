"""
Backend stores: the realtime key-value tree shared by all clients.
"""

from pyrollup import rollup

from . import base, firebase, memory
from .base import *  # noqa
from .firebase import *  # noqa
from .memory import *  # noqa

__all__ = rollup(base, memory, firebase)
