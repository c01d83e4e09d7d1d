"""Interactive, terminal-driven workflows built on ``ImportSession``."""
