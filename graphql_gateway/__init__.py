"""
GraphQL Gateway

Thin HTTP gateway in front of a GraphQL engine:
- Reverse proxy for /api/graphql (bearer credential required)
- Placeholder sign-in endpoint
- Static file serving
- CORS on every registered route
- Graceful shutdown on SIGINT/SIGTERM
"""

__version__ = '1.0.0'
