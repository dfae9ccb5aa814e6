"""
=============================================================================
HTTP ROUTER
=============================================================================

Maps (method, path) to a handler, with ":param" path segments.

    GET  /                              → index (inline)
    GET  /health                        → health (inline)
    GET  /menu                          → menu (worker)
    GET  /merchant/:merchant_id/dishes  → merchant dishes (worker)
    POST /order/create                  → create order (worker)

=============================================================================
ROUTE METADATA
=============================================================================

Routes can carry metadata. The service reads one key:

    inline=True   Answer on the reader thread that parsed the request;
                  never submitted to the workers. Only for handlers that
                  do no database I/O (index, health).

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Callable, Optional, Dict, Any, List, Tuple
import re

from .request import HTTPRequest
from .response import HTTPResponse, not_found, method_not_allowed


Handler = Callable[[HTTPRequest], HTTPResponse]


@dataclass
class Route:
    """
    A registered route.

        Route(
            path="/merchant/:merchant_id/dishes",
            method="GET",
            handler=catalog.merchant_dishes,
            name="merchant_dishes",
            meta={},
            _pattern=<compiled>,
            _param_names=["merchant_id"],
        )
    """
    path: str
    method: Optional[str]            # None = any method
    handler: Handler
    name: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    _pattern: Optional[re.Pattern] = field(default=None, repr=False)
    _param_names: List[str] = field(default_factory=list, repr=False)

    @property
    def inline(self) -> bool:
        return bool(self.meta.get("inline"))


@dataclass
class RouteMatch:
    """A matched route plus the path parameters pulled out of the URL."""
    route: Route
    params: Dict[str, str]


class Router:
    """
    HTTP request router with dynamic path parameters.

        router = Router()

        @router.get("/merchant/:merchant_id/dishes")
        def merchant_dishes(request):
            merchant_id = request.path_params["merchant_id"]
            ...

    First registered, first matched.
    """

    def __init__(self):
        self._routes: List[Route] = []
        self._named_routes: Dict[str, Route] = {}

    def add_route(
        self,
        path: str,
        handler: Handler,
        method: Optional[str] = None,
        name: Optional[str] = None,
        **meta: Any
    ) -> Route:
        """
        Register a route.

        Args:
            path: URL pattern (e.g., /merchant/:merchant_id/dishes)
            handler: Takes a request, returns a response
            method: HTTP method (None for any method)
            name: Optional route name
            **meta: Metadata such as inline=True
        """
        pattern, param_names = self._compile_pattern(path)

        route = Route(
            path=path,
            method=method.upper() if method else None,
            handler=handler,
            name=name,
            meta=meta,
            _pattern=pattern,
            _param_names=param_names,
        )

        self._routes.append(route)
        if name:
            self._named_routes[name] = route

        return route

    def _compile_pattern(self, path: str) -> Tuple[re.Pattern, List[str]]:
        """
        Compile "/merchant/:merchant_id/dishes" into
        ^/merchant/(?P<merchant_id>[^/]+)/dishes$
        """
        param_names: List[str] = []
        regex_parts = ["^"]

        for segment in path.split("/"):
            if not segment:
                continue

            regex_parts.append("/")

            if segment.startswith(":"):
                param_name = segment[1:]
                param_names.append(param_name)
                regex_parts.append(f"(?P<{param_name}>[^/]+)")
            else:
                regex_parts.append(re.escape(segment))

        if len(regex_parts) == 1:
            regex_parts.append("/")
        regex_parts.append("$")

        return re.compile("".join(regex_parts)), param_names

    @staticmethod
    def _normalize(path: str) -> str:
        return "/" + path.strip("/") if path != "/" else "/"

    def match(self, method: str, path: str) -> Optional[RouteMatch]:
        """Find the first route matching method and path."""
        path = self._normalize(path)

        for route in self._routes:
            if route.method and route.method != method.upper():
                continue

            match = route._pattern.match(path)
            if match:
                return RouteMatch(route=route, params=match.groupdict())

        return None

    def get_allowed_methods(self, path: str) -> List[str]:
        """Methods registered for a path; feeds the Allow header on 405."""
        path = self._normalize(path)
        methods = set()

        for route in self._routes:
            if route._pattern.match(path):
                if route.method is None:
                    return sorted(RouteMethods.ALL)
                methods.add(route.method)

        return sorted(methods)

    def no_match_response(self, request: HTTPRequest) -> HTTPResponse:
        """405 if the path exists under another method, else 404."""
        allowed = self.get_allowed_methods(request.path)
        if allowed:
            return method_not_allowed(allowed)
        return not_found(f"No route matches {request.path}")

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        """Route a request and run its handler on the calling thread."""
        match = self.match(request.method, request.path)

        if match:
            request.path_params = match.params
            return match.route.handler(request)

        return self.no_match_response(request)

    # =========================================================================
    # DECORATORS
    # =========================================================================

    def route(
        self,
        path: str,
        method: Optional[str] = None,
        name: Optional[str] = None,
        **meta: Any
    ) -> Callable[[Handler], Handler]:
        def decorator(handler: Handler) -> Handler:
            self.add_route(path, handler, method, name, **meta)
            return handler
        return decorator

    def get(self, path: str, name: Optional[str] = None, **meta: Any) -> Callable[[Handler], Handler]:
        return self.route(path, "GET", name, **meta)

    def post(self, path: str, name: Optional[str] = None, **meta: Any) -> Callable[[Handler], Handler]:
        return self.route(path, "POST", name, **meta)

    def routes(self) -> List[Route]:
        return list(self._routes)

    def get_route(self, name: str) -> Optional[Route]:
        return self._named_routes.get(name)


class RouteMethods:
    ALL = ("GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS")
