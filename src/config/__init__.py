from .loader import get_bool_env, get_int_env, get_str_env
from .session import SessionSettings, load_session_settings

__all__ = [
    "SessionSettings",
    "get_bool_env",
    "get_int_env",
    "get_str_env",
    "load_session_settings",
]
