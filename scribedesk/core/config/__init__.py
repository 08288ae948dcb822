from scribedesk.core.config.manager import ConfigManager, get_config
from scribedesk.core.config.models import (
    AppFileConfig,
    EventsBusConfigFile,
    RetentionDefaultsConfig,
    ScribeConfig,
    WebConfig,
)
from scribedesk.core.config.paths import ConfigFsPaths

__all__ = [
    "AppFileConfig",
    "ConfigFsPaths",
    "ConfigManager",
    "EventsBusConfigFile",
    "RetentionDefaultsConfig",
    "ScribeConfig",
    "WebConfig",
    "get_config",
]
