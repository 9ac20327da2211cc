from datetime import datetime, timezone
from unittest import mock

import pytest
import requests

from shoplink.admin_api import (
    AccessTokenResponse,
    AdminAPIError,
    AdminAPIService,
    is_duplicate_subscription,
)


SHOP = "foo.myshopify.com"


@pytest.fixture
def api():
    return AdminAPIService(
        api_key="key",
        api_secret="secret",
        api_version="2024-07",
        timeout=3,
        utcnow=lambda: datetime(2024, 1, 2, tzinfo=timezone.utc),
    )


def fake_response(json_body=None, status_code=200, text=""):
    response = mock.Mock(spec=requests.Response)
    response.status_code = status_code
    response.ok = status_code < 400
    response.text = text
    response.reason = "Reason"
    response.json.return_value = json_body
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status_code}")
    else:
        response.raise_for_status.return_value = None
    return response


@pytest.fixture
def post():
    with mock.patch("shoplink.admin_api.requests.post") as post:
        yield post


def test_request_access_token(api, post):
    post.return_value = fake_response(
        {"access_token": "tok_abc", "scope": "read_products, write_orders"}
    )
    token = api.request_access_token(SHOP, "code-1")
    assert token == AccessTokenResponse(
        access_token="tok_abc", scopes=["read_products", "write_orders"], extra={}
    )
    post.assert_called_once_with(
        f"https://{SHOP}/admin/oauth/access_token",
        json={"client_id": "key", "client_secret": "secret", "code": "code-1"},
        timeout=3,
    )


def test_request_access_token_http_error(api, post):
    post.return_value = fake_response(status_code=400, text="bad code")
    with pytest.raises(requests.HTTPError):
        api.request_access_token(SHOP, "code-1")


def test_request_access_token_without_token(api, post):
    post.return_value = fake_response({"scope": "read_products"})
    with pytest.raises(AdminAPIError):
        api.request_access_token(SHOP, "code-1")


def test_execute_graphql_sends_token_and_timeout(api, post):
    post.return_value = fake_response({"data": {"shop": {"name": "Foo"}}})
    assert api.execute_graphql(SHOP, "tok", "{ shop { name } }") == {
        "shop": {"name": "Foo"}
    }
    args, kwargs = post.call_args
    assert args[0] == f"https://{SHOP}/admin/api/2024-07/graphql.json"
    assert kwargs["headers"]["X-Shopify-Access-Token"] == "tok"
    assert kwargs["json"] == {"query": "{ shop { name } }"}
    assert kwargs["timeout"] == 3


def test_execute_graphql_errors(api, post):
    post.return_value = fake_response({"errors": [{"message": "Throttled"}]})
    with pytest.raises(AdminAPIError, match="Throttled"):
        api.execute_graphql(SHOP, "tok", "{ shop { name } }")

    post.return_value = fake_response(status_code=502, text="Bad gateway")
    with pytest.raises(AdminAPIError) as exc_info:
        api.execute_graphql(SHOP, "tok", "{ shop { name } }")
    assert exc_info.value.status_code == 502


def test_create_storefront_access_token(api, post):
    post.return_value = fake_response(
        {
            "data": {
                "storefrontAccessTokenCreate": {
                    "storefrontAccessToken": {"accessToken": "sf_1", "title": "t"},
                    "userErrors": [],
                }
            }
        }
    )
    assert api.create_storefront_access_token(SHOP, "tok") == "sf_1"
    variables = post.call_args.kwargs["json"]["variables"]
    assert variables == {"input": {"title": "shoplink 2024-01-02T00:00:00+00:00"}}


def test_create_storefront_access_token_user_errors(api, post):
    post.return_value = fake_response(
        {
            "data": {
                "storefrontAccessTokenCreate": {
                    "storefrontAccessToken": None,
                    "userErrors": [{"message": "Access denied", "field": None}],
                }
            }
        }
    )
    with pytest.raises(AdminAPIError) as exc_info:
        api.create_storefront_access_token(SHOP, "tok")
    assert exc_info.value.user_errors == [{"message": "Access denied", "field": None}]


def webhook_payload(user_errors, subscription=None):
    return {
        "data": {
            "webhookSubscriptionCreate": {
                "webhookSubscription": subscription,
                "userErrors": user_errors,
            }
        }
    }


def test_register_webhook(api, post):
    post.return_value = fake_response(webhook_payload([], {"id": "gid://1"}))
    assert (
        api.register_app_uninstalled_webhook(SHOP, "tok", "https://app/hook") == "gid://1"
    )
    variables = post.call_args.kwargs["json"]["variables"]
    assert variables == {
        "topic": "APP_UNINSTALLED",
        "sub": {"callbackUrl": "https://app/hook", "format": "JSON"},
    }


def test_register_webhook_duplicate_is_success(api, post):
    post.return_value = fake_response(
        webhook_payload(
            [{"message": "Address for this topic has already been taken", "field": []}]
        )
    )
    assert api.register_app_uninstalled_webhook(SHOP, "tok", "https://app/hook") is None


def test_register_webhook_other_error_raises(api, post):
    post.return_value = fake_response(
        webhook_payload([{"message": "Address is invalid", "field": ["callbackUrl"]}])
    )
    with pytest.raises(AdminAPIError, match="Address is invalid"):
        api.register_app_uninstalled_webhook(SHOP, "tok", "ftp://nope")


def test_is_duplicate_subscription():
    assert is_duplicate_subscription(
        [{"message": "Address for this topic has already been taken"}]
    )
    assert not is_duplicate_subscription([{"message": "Nope"}, {"message": None}])
    assert not is_duplicate_subscription([])


def test_fetch_products(api, post):
    post.return_value = fake_response(
        {
            "data": {
                "products": {
                    "nodes": [
                        {
                            "id": "gid://Product/1",
                            "title": "Boot",
                            "handle": "boot",
                            "featuredImage": {"url": "https://cdn/boot.png"},
                            "variants": {"nodes": [{"id": "gid://Variant/9", "price": "10.00"}]},
                        },
                        {
                            "id": "gid://Product/2",
                            "title": "Lace",
                            "handle": "lace",
                            "featuredImage": None,
                            "variants": {"nodes": []},
                        },
                    ]
                }
            }
        }
    )
    assert api.fetch_products(SHOP, "tok", first=5) == [
        {
            "id": "gid://Product/1",
            "title": "Boot",
            "handle": "boot",
            "imageUrl": "https://cdn/boot.png",
            "price": "10.00",
            "variantId": "gid://Variant/9",
        },
        {
            "id": "gid://Product/2",
            "title": "Lace",
            "handle": "lace",
            "imageUrl": None,
            "price": None,
            "variantId": None,
        },
    ]
    assert post.call_args.kwargs["json"]["variables"] == {"first": 5}


def test_create_cart_uses_storefront_api(api, post):
    post.return_value = fake_response(
        {
            "data": {
                "cartCreate": {
                    "cart": {"id": "gid://Cart/1", "checkoutUrl": "https://checkout"},
                    "userErrors": [],
                }
            }
        }
    )
    result = api.create_cart(SHOP, "sf_tok", [{"variantId": "gid://Variant/9"}])
    assert result == {"checkoutUrl": "https://checkout", "cartId": "gid://Cart/1"}
    args, kwargs = post.call_args
    assert args[0] == f"https://{SHOP}/api/2024-07/graphql.json"
    assert kwargs["headers"]["X-Shopify-Storefront-Access-Token"] == "sf_tok"
    assert kwargs["json"]["variables"] == {
        "input": {"lines": [{"merchandiseId": "gid://Variant/9", "quantity": 1}]}
    }


def test_create_cart_missing_checkout_url(api, post):
    post.return_value = fake_response(
        {"data": {"cartCreate": {"cart": {"id": "gid://Cart/1"}, "userErrors": []}}}
    )
    with pytest.raises(AdminAPIError):
        api.create_cart(SHOP, "sf_tok", [{"variantId": "v", "quantity": 2}])
