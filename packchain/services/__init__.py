"""Business services for the order lifecycle."""
