"""Services package: backend storage and attachment handling."""
