from .config_loader import config_loader as config

__all__ = ['config']
