"""Lumina home controller: device state sync with a cloud IoT broker."""

__version__ = "0.3.0"
