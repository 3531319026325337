"""Data models for the knowledge base."""
