"""Declarative base shared by all CalRouter models."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass
