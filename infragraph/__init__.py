"""InfraGraph: aggregated internet infrastructure graph."""

__version__ = "1.0.0"
