"""Settings files and environment configuration."""
