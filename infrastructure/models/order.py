"""
订单数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import relationship

from .base import Base


class OrderModel(Base):
    """
    订单数据库模型

    所有业务规则都在 domain.order.entity.Order 中
    """
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, comment="订单ID (UUID)")
    user_id = Column(String(64), nullable=False, index=True, comment="用户ID")
    user_email = Column(String(255), nullable=False, default="", comment="下单时的邮箱")
    user_name = Column(String(100), nullable=False, default="", comment="下单时的用户名")

    # 金额信息（使用 Numeric 存储精确金额）
    total_amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="订单金额")
    discount = Column(Numeric(precision=15, scale=2), nullable=False, default=0, comment="优惠金额")
    coupon_code = Column(String(50), nullable=True, comment="优惠券")

    status = Column(
        String(20),
        nullable=False,
        default="Pending",
        index=True,
        comment="订单状态: Pending/Processing/Shipped/Delivered/Cancelled"
    )
    payment_id = Column(String(100), nullable=True, comment="支付ID")
    paid_at = Column(DateTime(timezone=True), nullable=True, comment="支付时间")

    # 链路追踪
    correlation_id = Column(String(64), nullable=True, index=True, comment="结账链路ID")
    source_event_id = Column(String(64), nullable=True, unique=True, comment="创建订单的事件ID")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )

    items = relationship(
        "OrderItemModel",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderItemModel.id",
    )

    __table_args__ = (
        Index("ix_orders_user_created", "user_id", "created_at"),
    )

    def __repr__(self):
        return f"<OrderModel(id='{self.id}', user_id='{self.user_id}', status='{self.status}')>"


class OrderItemModel(Base):
    """订单行"""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="订单ID"
    )
    product_id = Column(Integer, nullable=False, comment="商品ID")
    product_name = Column(String(200), nullable=False, default="", comment="商品名称快照")
    quantity = Column(Integer, nullable=False, comment="数量")
    price = Column(Numeric(precision=15, scale=2), nullable=False, comment="单价")
    total = Column(Numeric(precision=15, scale=2), nullable=False, comment="小计")

    order = relationship("OrderModel", back_populates="items")
