"""Cloud cost metrics for Google Cloud Storage and GKE in the Prometheus data model."""

__version__ = "0.1.0"