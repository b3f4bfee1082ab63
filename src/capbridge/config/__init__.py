"""Build target resolution and project configuration."""

from .target import ENV_KEYS, BuildContext, TargetPlatform, TargetResolver, resolve
from .project_config import PROJECT_FILE, ProjectConfig

__all__ = [
    "BuildContext",
    "ENV_KEYS",
    "PROJECT_FILE",
    "ProjectConfig",
    "TargetPlatform",
    "TargetResolver",
    "resolve",
]
