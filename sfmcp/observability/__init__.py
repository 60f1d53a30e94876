"""Logging setup for local diagnostic output."""
