from __future__ import annotations

from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

from src.app.core.constants import SCHEMA


class Base(DeclarativeBase):
    metadata = MetaData(schema=SCHEMA)
