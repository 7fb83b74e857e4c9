from sqlalchemy import Column, DateTime, String, func

from luixa.core.database import Base


class BlacklistedNumber(Base):
    __tablename__ = "blacklisted_numbers"

    phone = Column(String(30), primary_key=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
