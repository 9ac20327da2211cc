"""
Shared fixtures.

The pyramid app runs against a throwaway sqlite file and a mocked
AdminAPIService, nothing here talks to shopify.
"""
from unittest import mock
from urllib.parse import urlencode, urlsplit, parse_qs

import jwt
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from webob import Request

from shoplink.admin_api import AccessTokenResponse
from shoplink.install_token import sign_install_token
from shoplink.signing import calculate_hmac
from shoplink.storage.sqlalchemy_shim import SqlalchemyCredentialStore, create_tables
from shoplink.web import main


API_KEY = "test-api-key"
API_SECRET = "test-api-secret"
INSTALL_SIGNING_SECRET = "test-install-secret"
HOST_SESSION_SECRET = "test-host-secret"
SHOP = "foo.myshopify.com"
EXPERIENCE_ID = "exp_123"


@pytest.fixture
def store(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'store.sqlite'}")
    create_tables(engine)
    yield SqlalchemyCredentialStore(sessionmaker(bind=engine))
    engine.dispose()


@pytest.fixture
def settings(tmp_path):
    return {
        "sqlalchemy.url": f"sqlite:///{tmp_path / 'app.sqlite'}",
        "shoplink.create_tables": "true",
        "shoplink.api_key": API_KEY,
        "shoplink.api_secret": API_SECRET,
        "shoplink.install_signing_secret": INSTALL_SIGNING_SECRET,
        "shoplink.host_session_secret": HOST_SESSION_SECRET,
        "shoplink.access_scopes": "read_products,unauthenticated_read_product_listings",
        "shoplink.environment": "production",
    }


def make_admin_api():
    admin_api = mock.MagicMock()
    admin_api.request_access_token.return_value = AccessTokenResponse(
        access_token="tok_abc",
        scopes=["read_products", "unauthenticated_read_product_listings"],
    )
    admin_api.create_storefront_access_token.return_value = "sf_tok"
    admin_api.register_app_uninstalled_webhook.return_value = (
        "gid://shopify/WebhookSubscription/1"
    )
    return admin_api


def make_app(settings):
    app = main({}, **settings)
    app.registry.shoplink_admin_api = make_admin_api()
    return app


@pytest.fixture
def app(settings):
    return make_app(settings)


@pytest.fixture
def admin_api(app):
    return app.registry.shoplink_admin_api


@pytest.fixture
def app_store(app):
    return app.registry.shoplink_store


def get(app, path, params=None, headers=None):
    if params:
        path = f"{path}?{urlencode(params)}"
    return Request.blank(path, headers=headers or {}).get_response(app)


def post(app, path, body=b"", headers=None, content_type="application/json"):
    request = Request.blank(path, method="POST", headers=headers or {})
    request.content_type = content_type
    request.body = body
    return request.get_response(app)


def sign_params(params, secret=API_SECRET):
    return dict(params, hmac=calculate_hmac(secret, params.items()))


def install_token(experience_id=EXPERIENCE_ID, sub="user_1", **kwargs):
    return sign_install_token(INSTALL_SIGNING_SECRET, sub, experience_id, **kwargs)


def host_token(sub="user_1", role="admin", experiences=(EXPERIENCE_ID,), **claims):
    payload = dict(sub=sub, role=role, experiences=list(experiences), **claims)
    return jwt.encode(payload, HOST_SESSION_SECRET, algorithm="HS256")


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


def query_of(url):
    return {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}


def install(app, shop=SHOP, experience_id=EXPERIENCE_ID, **extra):
    """Run the install step and return the state shopify would echo back."""
    response = get(
        app,
        "/shopify/install",
        dict(shop=shop, experienceId=experience_id, auth=install_token(experience_id), **extra),
    )
    assert response.status_int == 302
    return query_of(response.location)["state"]


def callback(app, state, shop=SHOP, code="grant-code", secret=API_SECRET):
    params = sign_params(
        {"code": code, "shop": shop, "state": state, "timestamp": "1710000000"},
        secret=secret,
    )
    return get(app, "/shopify/callback", params)
