UNAUTHENTICATED_WRITE_PREFIX = "unauthenticated_write_"


UNAUTHENTICATED_READ_PREFIX = "unauthenticated_read_"


WRITE_PREFIX = "write_"


READ_PREFIX = "read_"


def parse_scopes(scope_string):
    """Shopify sends granted scopes back as "read_products,write_orders"."""
    if not scope_string:
        return []
    return [scope.strip() for scope in scope_string.split(",") if scope.strip()]


def get_implied_scopes(scopes):
    implied_scopes = set()
    for scope in scopes:
        if scope.startswith(UNAUTHENTICATED_WRITE_PREFIX):
            implied_scopes.add(
                UNAUTHENTICATED_READ_PREFIX
                + scope.removeprefix(UNAUTHENTICATED_WRITE_PREFIX)
            )
        elif scope.startswith(WRITE_PREFIX):
            implied_scopes.add(READ_PREFIX + scope.removeprefix(WRITE_PREFIX))
    return implied_scopes


def missing_scopes(granted_scopes, requested_scopes):
    """Requested scopes the grant does not cover, write_x covers read_x."""
    covered = set(granted_scopes).union(get_implied_scopes(granted_scopes))
    return sorted(set(requested_scopes) - covered)
