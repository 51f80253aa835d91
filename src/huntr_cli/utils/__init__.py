"""Utility helpers: console output and result rendering."""
