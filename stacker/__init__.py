"""Stacker: track a silver and gold stack against AI-sourced spot prices."""

__version__ = "0.1.0"
