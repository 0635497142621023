"""
API module: transport-agnostic routing and session endpoints.
"""

from cadence.api.router import CadenceRouter, Request, Response, Route, access_log
from cadence.api.handlers import SessionHandler, build_router

__all__ = [
    "CadenceRouter",
    "Request",
    "Response",
    "Route",
    "access_log",
    "SessionHandler",
    "build_router",
]
