"""Shared utilities: error taxonomy and identifier generation."""
