"""Shared wire contract of the Super One Health API."""
