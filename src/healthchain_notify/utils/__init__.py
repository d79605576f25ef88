"""
Utility modules for HealthChain Notify.
"""

from .logging import setup_logging, DeliveryLogger, NotifyFormatter

__all__ = ["setup_logging", "DeliveryLogger", "NotifyFormatter"]
