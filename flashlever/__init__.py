"""
flashlever: batched lending actions with flash-swap leverage settlement
"""

__version__ = "0.1.0"
