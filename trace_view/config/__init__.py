from .env import get_env, require_env
from .loader import load_config

__all__ = ["get_env", "load_config", "require_env"]
