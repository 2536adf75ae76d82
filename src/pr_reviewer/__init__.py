"""Local PR Reviewer: queue diff comments and deliver them to coding agents."""

__version__ = "0.1.0"
