"""kubeship — detect, build, and roll out web projects onto a cluster."""

__version__ = "0.1.0"
