from pyramid.view import view_config

from .. import ShopLinkService
from ..webhook_endpoint import WebhookEndpointService
from .pyramid_shim import PyramidWebShim


def get_web_shim(request):
    return PyramidWebShim(request.registry.shoplink_web_shim_config, request)


def get_service(request):
    registry = request.registry
    return ShopLinkService(
        config=registry.shoplink_config,
        web_shim=get_web_shim(request),
        store=registry.shoplink_store,
        admin_api=registry.shoplink_admin_api,
        host_session_verifier=registry.shoplink_host_session_verifier,
    )


@view_config(route_name="shopify_install", request_method="GET")
def install_view(request):
    return get_service(request).begin_install()


@view_config(route_name="shopify_install_start", request_method="GET")
def install_start_view(request):
    return get_service(request).start_install()


@view_config(route_name="shopify_callback", request_method="GET")
def callback_view(request):
    return get_service(request).auth_callback()


@view_config(route_name="shopify_app_uninstalled", request_method="POST")
def app_uninstalled_view(request):
    return WebhookEndpointService(
        web_shim=get_web_shim(request),
        store=request.registry.shoplink_store,
        api_secret=request.registry.shoplink_config.api_secret,
    ).process_app_uninstalled()


@view_config(route_name="shopify_shop", request_method="GET")
def shop_view(request):
    return get_service(request).get_shop_info()


@view_config(route_name="shopify_products", request_method="GET")
def products_view(request):
    return get_service(request).get_products()


@view_config(route_name="shopify_storefront_config", request_method="GET")
def storefront_config_view(request):
    return get_service(request).get_storefront_config()


@view_config(route_name="shopify_cart_create", request_method="POST")
def cart_create_view(request):
    return get_service(request).create_cart()


@view_config(route_name="shopify_disconnect", request_method="POST")
def disconnect_view(request):
    return get_service(request).disconnect_shop()


@view_config(route_name="shopify_close_store", request_method="POST")
def close_store_view(request):
    return get_service(request).close_shop()


@view_config(route_name="shopify_update_name", request_method="POST")
def update_name_view(request):
    return get_service(request).update_shop_name()
