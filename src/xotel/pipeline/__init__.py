"""Poll scheduling and the stage pipeline."""
