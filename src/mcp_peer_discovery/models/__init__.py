"""Data models for service descriptors and tools."""
