"""
Logged meal table, one row per food entry owned by a user.
"""
import uuid

from sqlalchemy import Column, String, Date, DateTime, Text
from sqlalchemy.sql import func
from app.models.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class Meal(Base):
    __tablename__ = "food_tb"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(64), nullable=True, index=True)
    foodname = Column(String, nullable=False)
    meal = Column(String(16), nullable=False)  # Breakfast, Lunch, Dinner, Snack
    fooddate_at = Column(Date, nullable=False, index=True)
    food_image_url = Column(Text, nullable=True)
    food_image_path = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    update_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Meal(foodname='{self.foodname}', meal='{self.meal}')>"
