"""
Train Bridge
============

Connects physical train controls (levers, buttons, motorised haptic
levers) on serial controller boards to the Train Sim World API.
"""

__version__ = "0.3.0"
