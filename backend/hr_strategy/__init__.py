"""AI HR strategy diagnosis service"""

__version__ = "1.0.0"
