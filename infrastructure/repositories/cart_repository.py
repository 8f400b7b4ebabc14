"""
购物车仓储实现
"""
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.cart.entity import Cart, CartItem
from domain.cart.repository import CartRepository
from infrastructure.models.cart import CartItemModel, CartModel


class SQLAlchemyCartRepository(CartRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: CartModel) -> Cart:
        return Cart(
            user_id=model.user_id,
            cart_id=model.id,
            items=[
                CartItem(
                    product_id=i.product_id,
                    product_name=i.product_name,
                    quantity=i.quantity,
                    price=Decimal(str(i.price)),
                )
                for i in model.items
            ],
            coupon_code=model.coupon_code,
            discount=Decimal(str(model.discount)),
        )

    async def _get_model(self, user_id: str) -> Optional[CartModel]:
        result = await self.session.execute(select(CartModel).where(CartModel.user_id == user_id))
        return result.scalar_one_or_none()

    async def get_by_user(self, user_id: str) -> Optional[Cart]:
        db_cart = await self._get_model(user_id)
        return self._to_entity(db_cart) if db_cart else None

    async def save(self, cart: Cart) -> Cart:
        """整体覆盖购物车内容"""
        db_cart = await self._get_model(cart.user_id)
        if db_cart is None:
            db_cart = CartModel(id=cart.cart_id, user_id=cart.user_id)
            self.session.add(db_cart)
        db_cart.coupon_code = cart.coupon_code
        db_cart.discount = cart.discount
        db_cart.items = [
            CartItemModel(
                product_id=i.product_id,
                product_name=i.product_name,
                quantity=i.quantity,
                price=i.price,
            )
            for i in cart.items
        ]
        await self.session.flush()
        await self.session.refresh(db_cart)
        return self._to_entity(db_cart)

    async def clear(self, user_id: str) -> bool:
        """清空购物车；不存在时返回 False"""
        db_cart = await self._get_model(user_id)
        if db_cart is None:
            return False
        db_cart.items = []
        db_cart.coupon_code = None
        db_cart.discount = Decimal("0")
        await self.session.flush()
        return True
