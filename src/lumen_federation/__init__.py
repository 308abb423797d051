"""Lumen federation engine: ActivityPub ingress, processing and delivery."""

__version__ = "0.1.0"
