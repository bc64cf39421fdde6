"""Storefront backend for batteries, inverters and solar equipment."""

__version__ = "0.1.0"
