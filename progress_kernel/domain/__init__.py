"""Pure domain core of the progress kernel (no I/O, no ORM sessions)."""
