"""mcnode: game-server container agent with a live console bridge."""

__version__ = "0.1.0"
