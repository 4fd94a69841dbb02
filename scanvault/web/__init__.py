"""HTTP surface: Flask application factory and CLI commands."""
