from .feature_flags import (
    FeatureFlags,
    EngineSettings,
    feature_flags,
    get_bool_env,
    get_float_env,
    get_int_env,
    get_engine_settings,
    load_engine_settings,
)

__all__ = [
    "FeatureFlags",
    "EngineSettings",
    "feature_flags",
    "get_bool_env",
    "get_float_env",
    "get_int_env",
    "get_engine_settings",
    "load_engine_settings",
]
