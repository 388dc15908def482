"""CleverCard: report card management core for teachers."""

__version__ = "0.1.0"
