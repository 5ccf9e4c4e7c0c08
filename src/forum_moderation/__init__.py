"""Moderation state propagation for forum posts, topics and users."""

__version__ = "0.1.0"
