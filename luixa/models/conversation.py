from sqlalchemy import Column, DateTime, Integer, String, Text, func

from luixa.core.database import Base


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True)
    phone = Column(String, unique=True, index=True, nullable=False)

    # paso que espera captura (ver luixa.fsm.states)
    state = Column(String, default="START", nullable=False)

    # ConversationData serializado
    data = Column(Text, default="{}", nullable=False)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
