"""DNSimple distribution monitor — measures how long zone changes take to propagate."""

__version__ = "0.1.0"
