"""
Pyramid wiring.

Everything shared between requests, the engine, the store and the api
client, is built once here and hung off the registry.
"""
import logging
import os

from pyramid.config import Configurator
from pyramid.settings import asbool, aslist
from sqlalchemy import engine_from_config
from sqlalchemy.orm import sessionmaker

from .. import ShopLinkConfig
from ..admin_api import AdminAPIService
from ..host_auth import HostSessionVerifier
from ..storage.sqlalchemy_shim import SqlalchemyCredentialStore, create_tables
from .pyramid_shim import PyramidWebShimConfig

logger = logging.getLogger(__name__)


# setting name -> environment variable used when the setting is missing.
ENV_FALLBACKS = {
    "shoplink.api_key": "SHOPIFY_API_KEY",
    "shoplink.api_secret": "SHOPIFY_API_SECRET",
    "shoplink.api_version": "SHOPIFY_API_VERSION",
    "shoplink.access_scopes": "SHOPIFY_SCOPES",
    "shoplink.install_signing_secret": "INSTALL_SIGNING_SECRET",
    "shoplink.host_session_secret": "HOST_SESSION_SECRET",
    "shoplink.allow_dev_install": "ALLOW_DEV_INSTALL_UNAUTH",
    "shoplink.environment": "SHOPLINK_ENV",
    "sqlalchemy.url": "DATABASE_URL",
}


def get_setting(settings, name, default=None):
    value = settings.get(name)
    if value is None and name in ENV_FALLBACKS:
        value = os.environ.get(ENV_FALLBACKS[name])
    return default if value is None else value


def config_from_settings(settings):
    missing = [
        name
        for name in (
            "shoplink.api_key",
            "shoplink.api_secret",
            "shoplink.install_signing_secret",
        )
        if not get_setting(settings, name)
    ]
    if missing:
        raise ValueError(f"Missing settings: {', '.join(missing)}")
    # Shopify wants "a,b" but ini files read nicer one per line.
    scopes = []
    for value in aslist(get_setting(settings, "shoplink.access_scopes", "")):
        scopes.extend(scope for scope in value.split(",") if scope)
    return ShopLinkConfig(
        api_key=get_setting(settings, "shoplink.api_key"),
        api_secret=get_setting(settings, "shoplink.api_secret"),
        install_signing_secret=get_setting(settings, "shoplink.install_signing_secret"),
        access_scopes=tuple(scopes),
        api_version=get_setting(settings, "shoplink.api_version", "2024-07"),
        host_session_secret=get_setting(settings, "shoplink.host_session_secret"),
        allow_dev_install=asbool(
            get_setting(settings, "shoplink.allow_dev_install", False)
        ),
        environment=get_setting(settings, "shoplink.environment", "production"),
        request_timeout=float(get_setting(settings, "shoplink.request_timeout", 10)),
        install_token_lifetime=int(
            get_setting(settings, "shoplink.install_token_lifetime", 5 * 60)
        ),
    )


def includeme(config):
    settings = config.get_settings()
    registry = config.registry

    shoplink_config = config_from_settings(settings)
    if shoplink_config.allow_dev_install:
        logger.warning("Dev install bypass is enabled.")

    engine_settings = dict(settings)
    engine_settings["sqlalchemy.url"] = get_setting(settings, "sqlalchemy.url")
    if not engine_settings["sqlalchemy.url"]:
        raise ValueError("Missing settings: sqlalchemy.url")
    engine = engine_from_config(engine_settings, "sqlalchemy.")
    if asbool(settings.get("shoplink.create_tables", False)):
        create_tables(engine)

    registry.shoplink_config = shoplink_config
    registry.shoplink_web_shim_config = PyramidWebShimConfig()
    registry.shoplink_engine = engine
    registry.shoplink_store = SqlalchemyCredentialStore(sessionmaker(bind=engine))
    registry.shoplink_admin_api = AdminAPIService(
        api_key=shoplink_config.api_key,
        api_secret=shoplink_config.api_secret,
        api_version=shoplink_config.api_version,
        timeout=shoplink_config.request_timeout,
    )
    registry.shoplink_host_session_verifier = (
        HostSessionVerifier(
            shoplink_config.host_session_secret,
            jwt_leeway_in_seconds=shoplink_config.jwt_leeway_in_seconds,
        )
        if shoplink_config.host_session_secret
        else None
    )

    config.add_route("shopify_install", "/shopify/install")
    config.add_route("shopify_install_start", "/shopify/install/start")
    config.add_route("shopify_callback", "/shopify/callback")
    config.add_route("shopify_app_uninstalled", "/shopify/webhooks/app_uninstalled")
    config.add_route("shopify_shop", "/shopify/shop")
    config.add_route("shopify_products", "/shopify/products")
    config.add_route("shopify_storefront_config", "/shopify/storefront-config")
    config.add_route("shopify_cart_create", "/shopify/cart/create")
    config.add_route("shopify_disconnect", "/shopify/disconnect")
    config.add_route("shopify_close_store", "/shopify/close-store")
    config.add_route("shopify_update_name", "/shopify/update-name")
    config.scan(".views")


def main(global_config, **settings):
    """Return the WSGI app, for pserve."""
    with Configurator(settings=settings) as config:
        config.include("shoplink.web")
    return config.make_wsgi_app()
