"""
Declarative base shared by the SQL table models.
"""
from sqlalchemy.orm import declarative_base

Base = declarative_base()
