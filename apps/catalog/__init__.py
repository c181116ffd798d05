"""Catalog app package.

Read-only listing reference data for the booking engine: excursions with
their group discounts, lodgings with their room types and seasonal rates,
paid extras and cancellation policies.
"""
