"""Configuration for the snatch CLI layer."""
