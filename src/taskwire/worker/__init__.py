"""Worker process — consumes task events and runs them."""
