"""HTTP layer: Flask blueprints, error handlers and auth decorators."""
