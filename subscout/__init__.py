"""
SubScout: subscription detection and cancellation workflow engine.
"""

__version__ = '0.1.0'
