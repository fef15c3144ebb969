"""Consultorio - appointment booking and billing consistency engine"""

__version__ = "1.0.0"
