"""
TableWatch - real-time anti-cheat for multiplayer card games
"""

__version__ = "0.1.0"
