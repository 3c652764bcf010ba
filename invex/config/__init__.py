from invex.config.invex_config import InvexConfig

__all__ = ['InvexConfig']
