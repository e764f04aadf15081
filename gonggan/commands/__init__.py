"""Implementations behind the gonggan CLI commands."""
