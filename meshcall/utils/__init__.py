"""
Shared helpers: wire serialization and logging setup.
"""
