"""Pure domain model for the freight lead marketplace core (no I/O)."""
