"""Database module for the Midtrans Payment Backend."""

from .db import Database

__all__ = ['Database']
