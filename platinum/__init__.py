"""An event-driven HTTP server for static files and FastCGI back ends."""

__version__ = "0.1.0"