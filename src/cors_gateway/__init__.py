"""cors-gateway: a policy-enforcing HTTP forwarding gateway with CORS injection."""

__version__ = "0.1.0"
