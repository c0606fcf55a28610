from factory_gdpr.core.config.manager import ConfigManager
from factory_gdpr.core.config.models import GovernanceConfigFile, default_governance_config_dict
from factory_gdpr.core.config.paths import ConfigFsPaths

__all__ = ["ConfigManager", "ConfigFsPaths", "GovernanceConfigFile", "default_governance_config_dict"]
