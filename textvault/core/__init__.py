"""
This module implements the session synchronization and merge engine along
with its collaborators: identity, auth, stores, the sync channel and the
local cache.
"""

from pyrollup import rollup

from . import (
    auth,
    cache,
    channel,
    exceptions,
    identity,
    merge,
    scheduler,
    session,
    store,
    tab,
    vault,
)
from .auth import *  # noqa
from .cache import *  # noqa
from .channel import *  # noqa
from .exceptions import *  # noqa
from .identity import *  # noqa
from .merge import *  # noqa
from .scheduler import *  # noqa
from .session import *  # noqa
from .store import *  # noqa
from .tab import *  # noqa
from .vault import *  # noqa

__all__ = rollup(
    vault,
    session,
    merge,
    scheduler,
    channel,
    cache,
    auth,
    identity,
    tab,
    store,
    exceptions,
)
