"""
Dashboard API Routers.
"""
from . import alerts, health, risk

__all__ = ["alerts", "health", "risk"]
