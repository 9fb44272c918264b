"""Structured logging setup shared by the gateway modules."""

import structlog

# Structured logging
structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer()
    ]
)


def get_logger(**initial_values):
    return structlog.get_logger(**initial_values)
