"""Pydantic schemas for the API and the federation wire protocol."""
