"""Protocol engines, grouped by topic."""
