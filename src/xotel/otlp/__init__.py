"""OTLP translation and export."""
