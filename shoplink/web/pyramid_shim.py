from dataclasses import dataclass

from pyramid.request import Request
from pyramid.httpexceptions import (
    HTTPFound,
    HTTPBadRequest,
    HTTPForbidden,
    HTTPUnauthorized,
    HTTPNotFound,
    HTTPInternalServerError,
    HTTPBadGateway,
)
import zope.interface

from ..interfaces import IWebShim


@dataclass
class PyramidWebShimConfig:
    install_route: str = "shopify_install"
    auth_callback_route: str = "shopify_callback"
    webhook_route: str = "shopify_app_uninstalled"


@zope.interface.implementer(IWebShim)
@dataclass
class PyramidWebShim:
    """Shim between shoplink and pyramid for web tasks."""

    # Configuration params that describe how we should behave.
    config: PyramidWebShimConfig
    # The current request.
    request: Request

    def get_origin(self):
        """Scheme and host of the current request, proxies set X-Forwarded-Proto."""
        scheme = self.request.headers.get("X-Forwarded-Proto") or self.request.scheme
        return f"{scheme.split(',')[0].strip()}://{self.request.host}"

    def _route_url(self, route_name, get_params=None):
        kwargs = {}
        if get_params:
            kwargs["_query"] = get_params
        return self.get_origin() + self.request.route_path(route_name, **kwargs)

    def get_install_url(self, get_params=None):
        return self._route_url(self.config.install_route, get_params)

    def get_auth_callback_url(self, get_params=None):
        # Must be exactly what is whitelisted with shopify.
        return self._route_url(self.config.auth_callback_route, get_params)

    def get_webhook_url(self):
        return self._route_url(self.config.webhook_route)

    def _json_error(self, exc_cls, message):
        response = exc_cls()
        response.content_type = "application/json"
        response.json_body = {"error": message}
        return response

    def response_bad_request(self, message):
        return self._json_error(HTTPBadRequest, message)

    def response_401(self, message="Unauthorized"):
        return self._json_error(HTTPUnauthorized, message)

    def response_403(self, message="Forbidden"):
        return self._json_error(HTTPForbidden, message)

    def response_not_found(self, message):
        return self._json_error(HTTPNotFound, message)

    def response_server_error(self, message):
        return self._json_error(HTTPInternalServerError, message)

    def response_bad_gateway(self, message):
        return self._json_error(HTTPBadGateway, message)

    def redirect_302_url(self, url):
        return HTTPFound(url)

    def response_json(self, body, status=200):
        response = self.request.response
        response.status_int = status
        response.content_type = "application/json"
        response.json_body = body
        return response

    def response_text(self, content, status=200):
        response = self.request.response
        response.status_int = status
        response.content_type = "text/plain"
        response.text = content
        return response

    def get_header(self, name, default=None):
        return self.request.headers.get(name, default)

    def get_param(self, name, default=None):
        return self.request.GET.get(name, default)

    def get_params(self, param_names=None, default=None):
        if param_names:
            params = {name: self.request.GET.get(name, default) for name in param_names}
        else:
            # Repeated keys and `k[]` keys stay lists for the hmac rules.
            params = {
                name: values[0] if len(values) == 1 and not name.endswith("[]") else values
                for name, values in self.request.GET.dict_of_lists().items()
            }
        return params

    def get_request_body(self):
        return self.request.body

    def get_request_json_body(self):
        try:
            return self.request.json_body
        except ValueError:
            return None
