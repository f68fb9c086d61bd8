"""Shared helpers with no dependency on services or routers."""
