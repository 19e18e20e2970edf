from predictive_maintenance.config.settings import Settings, settings, get_config

__all__ = ["Settings", "settings", "get_config"]
