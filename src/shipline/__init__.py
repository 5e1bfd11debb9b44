"""Shipline - build, test and deploy pipeline with safe process replacement."""

__version__ = "0.1.0"
