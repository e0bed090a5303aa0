"""Track AWS service quota usage and warn before limits are reached."""

__version__ = "0.1.0"
