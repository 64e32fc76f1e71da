from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from db.base import Base


class Merchant(Base):
    __tablename__ = "Merchants"

    MerchantID = Column(Integer, primary_key=True)
    MerchantName = Column(String(255), nullable=False)
    Email = Column(String(255))
    Phone = Column(String(50))
    IsActive = Column(Boolean, default=True)
    CreatedDate = Column(DateTime(timezone=True), server_default=func.now())

    Outlets = relationship("Outlet", back_populates="Merchant")
    Subscriptions = relationship("Subscription", back_populates="Merchant")


class Outlet(Base):
    __tablename__ = "Outlets"

    OutletID = Column(Integer, primary_key=True)
    MerchantID = Column(Integer, ForeignKey("Merchants.MerchantID"), nullable=False)
    OutletName = Column(String(255), nullable=False)
    Address = Column(String(500))
    IsActive = Column(Boolean, default=True)
    CreatedDate = Column(DateTime(timezone=True), server_default=func.now())

    Merchant = relationship("Merchant", back_populates="Outlets")
    StockRows = relationship("OutletStock", back_populates="Outlet")
    Orders = relationship("Order", back_populates="Outlet")


class Product(Base):
    __tablename__ = "Products"

    ProductID = Column(Integer, primary_key=True)
    MerchantID = Column(Integer, ForeignKey("Merchants.MerchantID"), nullable=False)
    ProductName = Column(String(255), nullable=False)
    Barcode = Column(String(100))
    RentPrice = Column(Integer, default=0)
    SalePrice = Column(Integer, default=0)
    Deposit = Column(Integer, default=0)
    IsActive = Column(Boolean, default=True)
    CreatedDate = Column(DateTime(timezone=True), server_default=func.now())
    UpdatedDate = Column(DateTime(timezone=True), server_default=func.now())

    StockRows = relationship("OutletStock", back_populates="Product")
    OrderItems = relationship("OrderItem", back_populates="Product")


class OutletStock(Base):
    __tablename__ = "OutletStock"
    __table_args__ = (UniqueConstraint("ProductID", "OutletID", name="UQ_OutletStock_Product_Outlet"),)

    OutletStockID = Column(Integer, primary_key=True)
    ProductID = Column(Integer, ForeignKey("Products.ProductID"), nullable=False)
    OutletID = Column(Integer, ForeignKey("Outlets.OutletID"), nullable=False)
    Stock = Column(Integer, nullable=False, default=0)
    Renting = Column(Integer, nullable=False, default=0)
    UpdatedDate = Column(DateTime(timezone=True), server_default=func.now())

    Product = relationship("Product", back_populates="StockRows")
    Outlet = relationship("Outlet", back_populates="StockRows")


class Customer(Base):
    __tablename__ = "Customers"

    CustomerID = Column(Integer, primary_key=True)
    MerchantID = Column(Integer, ForeignKey("Merchants.MerchantID"), nullable=False)
    FirstName = Column(String(100), nullable=False)
    LastName = Column(String(100))
    Phone = Column(String(50))
    Email = Column(String(255))
    CreatedDate = Column(DateTime(timezone=True), server_default=func.now())

    Orders = relationship("Order", back_populates="Customer")


class Order(Base):
    __tablename__ = "Orders"

    OrderID = Column(Integer, primary_key=True)
    OrderNumber = Column(String(50), nullable=False)
    OrderType = Column(String(10), nullable=False, default="RENT")
    Status = Column(String(20), nullable=False, default="RESERVED")
    OutletID = Column(Integer, ForeignKey("Outlets.OutletID"), nullable=False)
    CustomerID = Column(Integer, ForeignKey("Customers.CustomerID"))
    PickupPlanAt = Column(DateTime(timezone=True))
    ReturnPlanAt = Column(DateTime(timezone=True))
    PickedUpAt = Column(DateTime(timezone=True))
    ReturnedAt = Column(DateTime(timezone=True))
    TotalAmount = Column(Integer, default=0)
    DepositAmount = Column(Integer, default=0)
    Notes = Column(String(1000))
    CreatedDate = Column(DateTime(timezone=True), server_default=func.now())
    UpdatedDate = Column(DateTime(timezone=True), server_default=func.now())

    Outlet = relationship("Outlet", back_populates="Orders")
    Customer = relationship("Customer", back_populates="Orders")
    OrderItems = relationship("OrderItem", back_populates="Order", cascade="all, delete-orphan")


class OrderItem(Base):
    __tablename__ = "OrderItems"

    OrderItemID = Column(Integer, primary_key=True)
    OrderID = Column(Integer, ForeignKey("Orders.OrderID"), nullable=False)
    ProductID = Column(Integer, ForeignKey("Products.ProductID"), nullable=False)
    Quantity = Column(Integer, nullable=False, default=1)
    UnitPrice = Column(Integer, default=0)
    TotalPrice = Column(Integer, default=0)

    Order = relationship("Order", back_populates="OrderItems")
    Product = relationship("Product", back_populates="OrderItems")


class Plan(Base):
    __tablename__ = "Plans"

    PlanID = Column(Integer, primary_key=True)
    PlanName = Column(String(100), nullable=False)
    BasePrice = Column(Integer, nullable=False, default=0)
    Currency = Column(String(3), nullable=False, default="USD")
    IsActive = Column(Boolean, default=True)
    CreatedDate = Column(DateTime(timezone=True), server_default=func.now())

    Subscriptions = relationship("Subscription", back_populates="Plan")


class Subscription(Base):
    __tablename__ = "Subscriptions"

    SubscriptionID = Column(Integer, primary_key=True)
    MerchantID = Column(Integer, ForeignKey("Merchants.MerchantID"), nullable=False)
    PlanID = Column(Integer, ForeignKey("Plans.PlanID"), nullable=False)
    Status = Column(String(20), nullable=False, default="ACTIVE")
    Amount = Column(Integer, nullable=False, default=0)
    Currency = Column(String(3), nullable=False, default="USD")
    BillingCycle = Column(String(20), nullable=False, default="monthly")
    CurrentPeriodStart = Column(DateTime(timezone=True), nullable=False)
    CurrentPeriodEnd = Column(DateTime(timezone=True), nullable=False)
    CreatedDate = Column(DateTime(timezone=True), server_default=func.now())
    UpdatedDate = Column(DateTime(timezone=True), server_default=func.now())

    Merchant = relationship("Merchant", back_populates="Subscriptions")
    Plan = relationship("Plan", back_populates="Subscriptions")
    Payments = relationship("Payment", back_populates="Subscription")


class Payment(Base):
    __tablename__ = "Payments"

    PaymentID = Column(Integer, primary_key=True)
    SubscriptionID = Column(Integer, ForeignKey("Subscriptions.SubscriptionID"), nullable=False)
    Amount = Column(Integer, nullable=False)
    Currency = Column(String(3), nullable=False)
    Status = Column(String(20), nullable=False, default="PENDING")
    Description = Column(String(500))
    CreatedAt = Column(DateTime(timezone=True), server_default=func.now())

    Subscription = relationship("Subscription", back_populates="Payments")


class AuditLog(Base):
    __tablename__ = "AuditLogs"

    AuditID = Column(Integer, primary_key=True)
    EntityType = Column(String(50), nullable=False)
    EntityID = Column(Integer, nullable=False)
    Action = Column(String(100), nullable=False)
    Details = Column(String(2000))
    UserID = Column(Integer)
    CreatedAt = Column(DateTime(timezone=True), server_default=func.now())
