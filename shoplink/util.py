from urllib.parse import urlsplit


MYSHOPIFY_DOMAIN = "myshopify.com"


def build_shop_host(shop_name, myshopify_domain=MYSHOPIFY_DOMAIN):
    return f"{shop_name}.{myshopify_domain}"


def extract_shop_name(shop_host, myshopify_domain=MYSHOPIFY_DOMAIN):
    suffix = "." + myshopify_domain
    if shop_host and shop_host.endswith(suffix):
        return shop_host[: -len(suffix)]
    return None


def normalize_shop_domain(shop, myshopify_domain=MYSHOPIFY_DOMAIN):
    """Turn user input like " Foo.myshopify.com/admin " into "foo.myshopify.com".

    Returns None if the result isn't a shop host.
    """
    if not shop:
        return None
    domain = shop.strip().lower()
    if not domain.startswith(("http://", "https://")):
        domain = f"https://{domain}"
    try:
        hostname = urlsplit(domain).hostname
    except ValueError:
        return None
    if not hostname or not extract_shop_name(hostname, myshopify_domain):
        return None
    return hostname


def derive_shop_name(shop_host, myshopify_domain=MYSHOPIFY_DOMAIN):
    """Human readable default name, "cool-shoes.myshopify.com" -> "Cool Shoes"."""
    shop_name = extract_shop_name(shop_host, myshopify_domain) or shop_host
    words = [word for word in shop_name.replace("_", "-").split("-") if word]
    return " ".join(word.capitalize() for word in words) or shop_host
