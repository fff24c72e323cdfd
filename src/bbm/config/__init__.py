"""Model directory configuration."""
