"""HostPilot: agentless remote host management over SSH."""

__version__ = "0.1.0"
