from .loader import load_config, load_config_with_overrides
from .schema import ConformConfig, GeneSetDbConfig, MultiGSEAConfig

__all__ = [
    "load_config",
    "load_config_with_overrides",
    "MultiGSEAConfig",
    "GeneSetDbConfig",
    "ConformConfig",
]
