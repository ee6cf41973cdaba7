from __future__ import annotations

from ._core_base import *  # noqa: F401,F403
from ._core_model import *  # noqa: F401,F403
from ._core_parser import *  # noqa: F401,F403
from ._core_config import *  # noqa: F401,F403
from ._core_store import *  # noqa: F401,F403
from ._core_repository import *  # noqa: F401,F403
from ._core_lint import *  # noqa: F401,F403
from ._core_policy import *  # noqa: F401,F403
from ._core_compare import *  # noqa: F401,F403
from ._core_generation import *  # noqa: F401,F403
from ._core_governance import *  # noqa: F401,F403
from ._core_report import *  # noqa: F401,F403
