"""Deployment pipeline: push an image, roll out a revision, watch it settle."""

__version__ = "0.1.0"
