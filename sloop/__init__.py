"""Time-partitioned key-value history of Kubernetes resources, with retention and a WSGI front end."""

__version__ = "0.1.0"