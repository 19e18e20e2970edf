"""
Predictive Maintenance Scheduling Engine
Failure risk prediction, maintenance scheduling and fleet optimization
"""

__version__ = "1.0.0"
