"""
fetchq: a queueing controller for media-fetch jobs run by external tools.
"""

__version__ = "0.1.0"
