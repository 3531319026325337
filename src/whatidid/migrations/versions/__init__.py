"""Numbered schema migrations, applied in ascending order."""
