"""Shared infrastructure: settings, logging and command execution."""
