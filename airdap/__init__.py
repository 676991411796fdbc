"""Wireless CMSIS-DAP probe building blocks: a KCP transport and DAP packet handling."""

__version__ = "0.1.0"