"""
Database models - import all models here so Alembic can discover them.
"""
from dealnet.models.click_event import ClickEvent
from dealnet.models.system_alert import SystemAlert
from dealnet.models.deal import Deal, Product

__all__ = [
    "ClickEvent",
    "SystemAlert",
    "Deal",
    "Product",
]
