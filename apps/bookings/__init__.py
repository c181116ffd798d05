"""Bookings app package.

This app encapsulates the booking domain: the booking aggregate and its
lifecycle, cancellation refunds, booking references and the engine
facade that ties inventory holds, pricing and persistence together.
Capacity is held before a booking is stored and released whenever the
booking fails or is cancelled.
"""
