"""Staybroker: markup pricing and booking/payment lifecycle for brokered stays."""

__version__ = "0.1.0"
