"""Persistence schema for Nordics progression."""
