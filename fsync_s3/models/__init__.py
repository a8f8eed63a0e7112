"""Configuration and event models."""
