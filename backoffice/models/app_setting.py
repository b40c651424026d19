"""
Key/value application settings
"""
from datetime import datetime

from sqlalchemy import Column, Integer, String, Text, DateTime
from backoffice.database import Base


class AppSetting(Base):
    __tablename__ = "app_settings"

    id = Column(Integer, primary_key=True, index=True)
    setting_key = Column(String, unique=True, nullable=False, index=True)
    setting_value = Column(Text, nullable=True)  # stored as text, parsed by SettingsProvider
    description = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
