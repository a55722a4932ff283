from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from db.base import Base


class Customer(Base):
    __tablename__ = "Customers"

    CustomerID = Column(Integer, primary_key=True)
    FirstName = Column(String(100))
    LastName = Column(String(100))
    Email = Column(String(255))
    ContactNumber = Column(String(50))
    CreatedDate = Column(DateTime, server_default=func.now())

    Rentals = relationship("Rental", back_populates="Customer")


class Unit(Base):
    __tablename__ = "Cameras"

    UnitID = Column(Integer, primary_key=True)
    ModelName = Column(String(255), nullable=False, index=True)
    SerialNumber = Column(String(255), nullable=False)
    CameraStatus = Column(String(40), default="available")
    Condition = Column(String(100))
    ConditionNotes = Column(String(1000))
    Description = Column(String(1000))
    ImageUrl = Column(String(1000))
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    PricingTiers = relationship("PricingTier", back_populates="Unit", order_by="PricingTier.MinDays")
    Rentals = relationship("Rental", back_populates="Unit")


class PricingTier(Base):
    __tablename__ = "CameraPricingTiers"

    PricingTierID = Column(Integer, primary_key=True)
    UnitID = Column(Integer, ForeignKey("Cameras.UnitID"), nullable=False)
    MinDays = Column(Integer, nullable=False)
    MaxDays = Column(Integer)
    PricePerDay = Column(Numeric(10, 2), nullable=False)
    Description = Column(String(255))

    Unit = relationship("Unit", back_populates="PricingTiers")


class Rental(Base):
    __tablename__ = "Rentals"

    RentalID = Column(Integer, primary_key=True)
    UnitID = Column(Integer, ForeignKey("Cameras.UnitID"), nullable=False, index=True)
    CustomerID = Column(Integer, ForeignKey("Customers.CustomerID"))
    CustomerName = Column(String(255))
    CustomerContact = Column(String(50))
    CustomerEmail = Column(String(255))
    StartDate = Column(Date, nullable=False)
    EndDate = Column(Date, nullable=False)
    RentalStatus = Column(String(20), nullable=False, default="pending")
    ShippingStatus = Column(String(30))
    PricePerDay = Column(Numeric(10, 2))
    TotalPrice = Column(Numeric(10, 2))
    BookingType = Column(String(30), nullable=False, default="registered_user")
    CancellationReason = Column(String(1000))
    CancelledBy = Column(String(20))
    CancelledAt = Column(DateTime)
    RejectionReason = Column(String(1000))
    ContractPdfUrl = Column(String(1000))
    ConfirmedAt = Column(DateTime)
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())

    Unit = relationship("Unit", back_populates="Rentals")
    Customer = relationship("Customer", back_populates="Rentals")
    Payments = relationship("Payment", back_populates="Rental")
    Extensions = relationship("RentalExtension", back_populates="Rental", order_by="RentalExtension.ExtensionID")


class Payment(Base):
    __tablename__ = "Payments"

    PaymentID = Column(Integer, primary_key=True)
    RentalID = Column(Integer, ForeignKey("Rentals.RentalID"), nullable=False)
    ExtensionID = Column(Integer, ForeignKey("RentalExtensions.ExtensionID"))
    PaymentType = Column(String(20), nullable=False, default="rental")
    Amount = Column(Numeric(10, 2), nullable=False)
    PaymentStatus = Column(String(20), nullable=False, default="pending")
    CreatedBy = Column(Integer)
    CreatedDate = Column(DateTime, server_default=func.now())

    Rental = relationship("Rental", back_populates="Payments")


class RentalExtension(Base):
    __tablename__ = "RentalExtensions"

    ExtensionID = Column(Integer, primary_key=True)
    RentalID = Column(Integer, ForeignKey("Rentals.RentalID"), nullable=False)
    RequestedBy = Column(Integer)
    OriginalEndDate = Column(Date, nullable=False)
    RequestedEndDate = Column(Date, nullable=False)
    ExtensionDays = Column(Integer, nullable=False)
    AdditionalPrice = Column(Numeric(10, 2), nullable=False)
    ExtensionStatus = Column(String(20), nullable=False, default="pending")
    AdminNotes = Column(String(1000))
    RequestedAt = Column(DateTime, server_default=func.now())
    DecidedAt = Column(DateTime)

    Rental = relationship("Rental", back_populates="Extensions")


class AuditLog(Base):
    __tablename__ = "AuditLogs"

    AuditID = Column(Integer, primary_key=True)
    EntityType = Column(String(50), nullable=False)
    EntityID = Column(Integer, nullable=False)
    Action = Column(String(100), nullable=False)
    Details = Column(String(2000))
    UserID = Column(Integer)
    CreatedAt = Column(DateTime, server_default=func.now())


class NotificationQueue(Base):
    __tablename__ = "NotificationQueue"

    NotificationID = Column(Integer, primary_key=True)
    RentalID = Column(Integer)
    NotificationType = Column(String(50), nullable=False)
    Payload = Column(String(2000))
    CreatedAt = Column(DateTime, server_default=func.now())
    SentAt = Column(DateTime)
