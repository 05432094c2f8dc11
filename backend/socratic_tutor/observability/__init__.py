"""Tracing integration."""
