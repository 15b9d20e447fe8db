"""Modelos SQLAlchemy del motor de validación"""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Numeric, Text, JSON, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid
from shared.database.connection import Base


TICKET_STATUS_UNUSED = "unused"
TICKET_STATUS_VALIDATED = "validated"


class Event(Base):
    """Evento (solo lectura para el motor; lo administra el sistema de eventos)"""
    __tablename__ = "events"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(String, nullable=False)
    date = Column(DateTime(timezone=True), nullable=False)  # Ancla de la ventana de admisión
    venue = Column(String, nullable=True)
    location = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relaciones
    tickets = relationship("Ticket", back_populates="event")


class Ticket(Base):
    """
    Ticket emitido por el sistema de reservas.
    El motor solo modifica status, validation_count, used_at y validated_by.
    """
    __tablename__ = "tickets"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    event_id = Column(String, ForeignKey("events.id"), nullable=False, index=True)
    booking_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=False)
    ticket_type_name = Column(String, nullable=False)
    price = Column(Numeric(12, 2), nullable=False, server_default="0")
    status = Column(String, nullable=False, server_default=TICKET_STATUS_UNUSED)  # unused, validated
    validation_count = Column(Integer, nullable=False, server_default="0")
    used_at = Column(DateTime(timezone=True), nullable=True)  # Última validación
    validated_by = Column(String, nullable=True)  # Validador de la última validación
    issued_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relaciones
    event = relationship("Event", back_populates="tickets")


class ValidationLog(Base):
    """Registro inmutable de cada intento de validación"""
    __tablename__ = "validation_logs"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    validator_id = Column(String, nullable=False)
    validator_name = Column(String, nullable=True)
    ticket_id = Column(String, nullable=True)  # NULL si el payload no se pudo decodificar
    booking_id = Column(String, nullable=True)
    event_id = Column(String, nullable=True)
    user_id = Column(String, nullable=True)
    validation_type = Column(String, nullable=False, server_default="entry")  # entry, exit, general
    status = Column(String, nullable=False)  # validated, rejected, flagged
    notes = Column(String(1000), nullable=True)
    location = Column(String(200), nullable=True)
    device_user_agent = Column(Text, nullable=True)
    device_ip = Column(String, nullable=True)
    scan_method = Column(String, nullable=False, server_default="qr")  # qr, manual, image
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_validation_logs_validator_created", "validator_id", "created_at"),
        Index("ix_validation_logs_event_created", "event_id", "created_at"),
        Index("ix_validation_logs_status_created", "status", "created_at"),
    )


class AppSettings(Base):
    """
    Documento de configuración global (una sola fila).
    La sección validation contiene la política de validación en camelCase.
    """
    __tablename__ = "app_settings"

    id = Column(String, primary_key=True, default="global")
    validation = Column(JSON, nullable=False, default=dict)
    version = Column(Integer, nullable=False, server_default="1")
    updated_by = Column(String, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
