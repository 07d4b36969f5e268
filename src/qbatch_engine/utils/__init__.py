from .args_parser import parse_args
from .config_util import load_config, mask_sensitive_info, setup_logging
from .di_container import DiContainer

__all__ = [
    "DiContainer",
    "load_config",
    "mask_sensitive_info",
    "parse_args",
    "setup_logging",
]
