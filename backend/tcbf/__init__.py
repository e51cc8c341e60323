"""TC Booking Flow backend: entry lifecycle and abandoned-cart expiry."""
