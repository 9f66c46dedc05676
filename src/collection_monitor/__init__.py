"""Collection Monitor - rolling-window market analytics and threshold alerts."""

__version__ = "0.1.0"
