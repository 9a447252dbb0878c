"""
PowerWatt - Per-application power usage tracking.
"""

__version__ = "0.1.0"
