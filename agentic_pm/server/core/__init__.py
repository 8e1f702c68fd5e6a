"""Server core: constants and database wiring."""
