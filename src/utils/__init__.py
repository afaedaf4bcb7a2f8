"""Shared helpers for the Event Socket client."""
