"""
Detectors: bot, collusion, multi-account and rules
"""
