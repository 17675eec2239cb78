"""
Gantry Utils - Logging setup.
"""
