from .config import ScribeConfig, load_config
from .session_store import SessionStateStore

__all__ = ["ScribeConfig", "load_config", "SessionStateStore"]
