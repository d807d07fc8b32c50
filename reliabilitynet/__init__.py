"""Private customer reliability scoring with an opt-in pseudonymous network."""

__version__ = "0.4.0"
