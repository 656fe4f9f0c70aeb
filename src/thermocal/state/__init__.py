"""State/store layer.

This package is the single source of truth for what the engine remembers
per location and for the rules deciding when a stored location may be
sent another command.
"""
