# CalendarLink - delegated calendar connections for an assistant backend.
# Created: 2026-02-07

__version__ = "0.3.0"
