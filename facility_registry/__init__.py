"""Health Facility Registry — facility CSV import service."""

__version__ = "0.1.0"
