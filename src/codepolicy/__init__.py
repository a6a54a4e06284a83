"""codepolicy: architecture and resilience policy checks over source trees."""

__version__ = "0.4.0"
