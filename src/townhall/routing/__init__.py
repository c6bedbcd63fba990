"""Prefix routing from work-item identifiers to store workspaces."""

from townhall.routing.routes import Route, RouteTable, build_reset_routes

__all__ = ["Route", "RouteTable", "build_reset_routes"]
