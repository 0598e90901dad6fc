"""planstack — run stacks of dependent plans in order."""

__version__ = "0.1.0"
