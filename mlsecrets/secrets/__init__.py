"""Secret references, values and resolution."""
