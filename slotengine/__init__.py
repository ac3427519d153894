"""
slotengine - appointment slot generation, conflict detection and recurring
booking expansion.
"""

__version__ = "0.1.0"
