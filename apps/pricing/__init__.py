"""Pricing app package: pure price breakdown calculation."""
