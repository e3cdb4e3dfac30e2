"""Headless provisioning helpers for Raspberry Pi OS boot partitions and devices."""

__version__ = "1.2.0"
