from page_cache.config.loader import YamlConfigLoader
from page_cache.config.models import AppConfig, ConfigLoadRequest

__all__ = ["AppConfig", "ConfigLoadRequest", "YamlConfigLoader"]
