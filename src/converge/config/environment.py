"""Environment name resolution."""

import os
import re
from typing import Optional
from ..utils.errors import SettingsError
from ..utils.logging import get_logger

logger = get_logger("config.environment")

ENV_VAR = "CONVERGE_ENV"
DEFAULT_ENVIRONMENT = "default"

_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def resolve_environment(
    override: Optional[str] = None,
    declared: Optional[str] = None
) -> str:
    """
    Resolve the environment whose state is planned and applied.
    
    Priority:
    1. Explicit override (CLI --env)
    2. CONVERGE_ENV environment variable
    3. Name declared in the environment file
    4. "default"
    
    Args:
        override: Name passed on the command line
        declared: Name from the declared configuration file
        
    Returns:
        Normalized environment name
        
    Raises:
        SettingsError: If the resolved name cannot be used as a state key
    """
    for candidate, origin in (
        (override, "command line"),
        (os.getenv(ENV_VAR), ENV_VAR),
        (declared, "environment file"),
    ):
        if candidate:
            name = candidate.strip().lower()
            logger.debug(f"Environment '{name}' resolved from {origin}")
            break
    else:
        name = DEFAULT_ENVIRONMENT
    
    if not _NAME_PATTERN.match(name):
        raise SettingsError(
            f"Invalid environment name '{name}'. "
            "Use letters, digits, '.', '_' or '-'."
        )
    return name
