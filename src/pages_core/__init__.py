"""Build lifecycle orchestration for a static-site publishing platform."""

__version__ = "0.1.0"
