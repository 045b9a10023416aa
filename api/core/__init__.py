"""
Process-wide building blocks for the API.

`core/` holds the pieces every feature shares: settings, logging setup, the
database pool and request middleware. Feature routers and their SQL belong in
their own packages next to `core/`.
"""
