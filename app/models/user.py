"""
User profile table. Credentials live with the auth provider, never here.
"""
from sqlalchemy import Column, String, DateTime, Text
from sqlalchemy.sql import func
from app.models.database import Base


class User(Base):
    __tablename__ = "user_tb"

    id = Column(String(64), primary_key=True)  # auth provider user id
    fullname = Column(String, nullable=True)
    email = Column(String, nullable=True, index=True)
    gender = Column(String(16), nullable=True)  # Male, Female, Other
    user_image_url = Column(Text, nullable=True)
    user_image_path = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    update_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<User(email='{self.email}', fullname='{self.fullname}')>"
