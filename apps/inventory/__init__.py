"""Inventory app package.

Owns every capacity cell (excursion departure slots and lodging
room-type nights) and the holds taken against them. Capacity is changed
only through an InventoryStore.
"""
