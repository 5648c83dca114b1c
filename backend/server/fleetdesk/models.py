from sqlalchemy import Column, Integer, String, DateTime, Text, Index
from .db import Base

# timestamps are stored as naive UTC; the SQL store converts at the boundary


class Device(Base):
    __tablename__ = "devices"
    id = Column(Integer, primary_key=True)
    device_id = Column(String, unique=True, nullable=False, index=True)
    device_name = Column(String, nullable=True)
    os_version = Column(String, nullable=True)
    phone_number = Column(String, nullable=True)
    battery_level = Column(Integer, nullable=True)
    last_seen = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False, index=True)


class Command(Base):
    __tablename__ = "commands"
    id = Column(Integer, primary_key=True)
    device_id = Column(String, nullable=False)  # no FK: commands may precede registration
    command_type = Column(String, nullable=False)
    command_data = Column(Text, nullable=False)  # JSON text
    status = Column(String, nullable=False, default="pending")  # pending|sent|executed
    created_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_commands_device_status", "device_id", "status"),
        # never reuse ids after deletes
        {"sqlite_autoincrement": True},
    )


class SmsLog(Base):
    __tablename__ = "sms_logs"
    id = Column(Integer, primary_key=True)
    device_id = Column(String, nullable=False, index=True)
    sender = Column(String, nullable=False)
    message_body = Column(Text, nullable=False)
    received_at = Column(DateTime, nullable=False)

    __table_args__ = {"sqlite_autoincrement": True}


class FormSubmission(Base):
    __tablename__ = "form_submissions"
    id = Column(Integer, primary_key=True)
    device_id = Column(String, nullable=False, index=True)
    custom_data = Column(Text, nullable=False)  # JSON text
    submitted_at = Column(DateTime, nullable=False)

    __table_args__ = {"sqlite_autoincrement": True}


class GlobalSetting(Base):
    __tablename__ = "global_settings"
    setting_key = Column(String, primary_key=True)
    setting_value = Column(Text, nullable=True)  # JSON text
