# receiving_hub/services/__init__.py
"""
Business logic services for Receiving Hub.
"""
from receiving_hub.services.arrivals import ArrivalService
from receiving_hub.services.arrival_numbers import ArrivalNumberGenerator
from receiving_hub.services.statistics import StatisticsService

__all__ = [
    "ArrivalService",
    "ArrivalNumberGenerator",
    "StatisticsService",
]
