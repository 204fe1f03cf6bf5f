"""Flashing, RAM loading and register access for Espressif chips through their ROM bootloader."""

__version__ = "0.1.0"