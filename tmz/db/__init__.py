"""Cache database models and connection helpers."""
