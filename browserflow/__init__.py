"""
browserflow - block-structured browser workflow runner.
"""

__version__ = "0.1.0"
