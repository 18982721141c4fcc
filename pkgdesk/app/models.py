# pkgdesk/app/models.py
from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean

from .db import Base


# one row per logged parcel
class Package(Base):
    __tablename__ = "packages"
    package_id = Column(String, primary_key=True)
    barcode = Column(String, index=True, nullable=False)
    household_id = Column(String, index=True, nullable=False)
    recipient_name = Column(String, nullable=True)
    status = Column(String, index=True, default="Pending")
    received_time = Column(DateTime(timezone=True), nullable=False)
    pickup_time = Column(DateTime(timezone=True), nullable=True)
    pickup_otp = Column(String, nullable=True)  # "code|expiry"
    signature = Column(Text, nullable=True)
    is_overdue_notified = Column(Boolean, default=False)


# chat account bound to a household
class Resident(Base):
    __tablename__ = "residents"
    id = Column(Integer, primary_key=True, autoincrement=True)
    line_id = Column(String, index=True, nullable=False)
    household_id = Column(String, index=True, nullable=False)
    name = Column(String, default="")
    join_date = Column(DateTime(timezone=True), nullable=True)


class Admin(Base):
    __tablename__ = "admins"
    username = Column(String, primary_key=True)
    password = Column(String, nullable=False)
