"""Helpers shared by services and routers: client IPs, rate limiting, parsers, images and versioning."""
