"""
Core package for shared utilities.

Configuration, structured logging, token handling and rate limiting shared
by the API and the order and payment services.
"""
