"""Configuration: settings, logging setup, and constant tables."""
