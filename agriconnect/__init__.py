"""
AgriConnect farm-produce marketplace service.
"""

__version__ = "1.0.0"
