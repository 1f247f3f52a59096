"""X-Ray API access and segment document model."""
