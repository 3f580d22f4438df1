"""Room booking backend: bookings, prepaid credits, coupons and payments."""
