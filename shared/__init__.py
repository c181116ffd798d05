"""
Shared kernel of the booking engine.

Value objects, base domain classes, the error taxonomy, the message bus,
units of work and the conflict retry helper used by every app.
"""
