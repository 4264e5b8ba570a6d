"""Assessment attempt session engine."""
