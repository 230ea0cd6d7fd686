"""Service layer: credentials, connection resolution and the tool gateway."""
