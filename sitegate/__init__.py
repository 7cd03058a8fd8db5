"""SiteGate: policy gates, escrow release and project risk scoring."""

__version__ = "1.0.0"
