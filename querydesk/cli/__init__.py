"""QueryDesk command-line interface."""
