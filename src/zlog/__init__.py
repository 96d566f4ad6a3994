# src/zlog/__init__.py
"""zlog: a self-hosted blog that federates categories across instances."""

__version__ = "0.1.0"
