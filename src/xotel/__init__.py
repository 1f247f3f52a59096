"""xotel: forward AWS X-Ray traces to an OpenTelemetry collector."""

__version__ = "0.1.0"
