from sqlalchemy import Column, Integer, Float, String, Boolean, Text

from .database import Base


class SettingEntry(Base):
    """Persisted key/value setting"""
    __tablename__ = "settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)  # JSON encoded


class AlertEventRecord(Base):
    """Alert history entry"""
    __tablename__ = "alert_events"

    id = Column(String(36), primary_key=True)
    device_id = Column(String(36), nullable=False, index=True)
    device_name = Column(String(200), nullable=False)
    alert_type = Column(String(20), nullable=False, index=True)
    severity = Column(String(20), nullable=False)
    message = Column(Text, nullable=False)
    value = Column(Float, nullable=False)
    threshold = Column(Float, nullable=False)
    triggered_at = Column(Float, nullable=False, index=True)  # epoch seconds
    resolved_at = Column(Float, nullable=True)


class DeviceRecord(Base):
    """Monitored device"""
    __tablename__ = "devices"

    id = Column(String(36), primary_key=True)
    name = Column(String(200), nullable=False)
    hostname = Column(String(255), nullable=False, index=True)
    address = Column(String(255), nullable=False)
    port = Column(Integer, nullable=False, default=17890)
    is_enabled = Column(Boolean, default=True)
    last_seen = Column(Float, nullable=False)
    status = Column(String(20), default="unknown")
    connection_type = Column(String(20), default="remote")
    position = Column(Integer, nullable=False, default=0)


class SilenceScheduleRecord(Base):
    """Recurring silence window"""
    __tablename__ = "silence_schedules"

    id = Column(String(36), primary_key=True)
    start_time = Column(String(5), nullable=False)  # HH:MM
    end_time = Column(String(5), nullable=False)
    weekdays = Column(String(20), nullable=False)  # comma separated, 0 = Sunday
    is_enabled = Column(Boolean, default=True)
    position = Column(Integer, nullable=False, default=0)
