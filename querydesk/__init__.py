"""QueryDesk: natural-language BI chat over hosted Postgres."""

__version__ = "0.1.0"
