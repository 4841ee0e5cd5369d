"""Shared utilities: structured logging and log masking."""
