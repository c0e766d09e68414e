"""Proxy node testing toolkit: latency, NAT type, download speed, signing and task scheduling."""

__version__ = "4.3.2"