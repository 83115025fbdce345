"""Shared utilities for mcp-relay."""
