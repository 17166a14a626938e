"""Image file input and output."""
