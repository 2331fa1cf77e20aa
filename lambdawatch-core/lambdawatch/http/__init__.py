from .request import Request
from .response import Response
from .router import Router, route

__all__ = ["route", "Router", "Response", "Request"]
