"""Secret store backends."""
