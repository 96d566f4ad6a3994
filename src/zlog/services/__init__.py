# src/zlog/services/__init__.py
"""Federation services for the zlog application."""
