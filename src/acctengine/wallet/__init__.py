"""
Wallet state, history sync and spend construction.
"""
