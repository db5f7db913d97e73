"""Basket performance engine: CAGR, XIRR, SIP and rolling returns for weighted baskets."""

__version__ = "0.1.0"
