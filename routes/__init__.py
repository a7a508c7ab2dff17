from .api import api_bp
from .cron import cron_bp

__all__ = ["api_bp", "cron_bp"]
