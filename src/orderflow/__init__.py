"""orderflow: order lifecycle engine for a storefront backend."""
