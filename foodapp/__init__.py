"""
foodapp - checkout backend for the food and grocery delivery marketplace.
"""

__version__ = "1.0.0"
