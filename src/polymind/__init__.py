"""Polymind: multi-agent chat rooms over many text-generation vendors."""

__version__ = "0.1.0"
