"""Fibers, a thread-pool scheduler, timers, an I/O event manager, a skip-list store and shared key-value helpers."""

__version__ = "0.1.0"