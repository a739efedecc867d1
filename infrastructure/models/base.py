"""
ORM declarative base (SQLAlchemy 2.0 style)
"""
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


metadata = Base.metadata
