"""storyloom: branching-narrative engine.

Story graph model, play session state machine, and tree layout for
interactive stories.
"""

__version__ = "0.3.0"
