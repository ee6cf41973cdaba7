from .baselines import command_baselines
from .compatibility import command_diff, command_govern
from .definitions import command_lint, command_parse
from .generation import command_generate

__all__ = [
    "command_baselines",
    "command_diff",
    "command_generate",
    "command_govern",
    "command_lint",
    "command_parse",
]
