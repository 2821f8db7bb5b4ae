"""LAN internet monitor - ping/traceroute probes, time-series storage and reports."""

__version__ = "1.0.0"
