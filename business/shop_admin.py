"""店铺管理

店主在仪表盘上对店铺资料、理发师和服务项目的维护操作。
带头像的理发师先上传头像，上传失败则不创建理发师。
"""
from typing import Any, Dict, Optional

from loguru import logger

from database import DatabaseManager
from database.exceptions import RecordNotFound
from database.models import Barber, Service, Shop
from business.avatar_storage import AvatarStore


class ShopAdmin:
    """店铺管理服务"""

    def __init__(self, db: DatabaseManager,
                 avatars: Optional[AvatarStore] = None):
        self.db = db
        self.avatars = avatars

    def update_shop(self, shop_id: int, **changes: Any) -> Dict[str, Any]:
        """更新店铺资料，返回更新后的店铺信息"""
        self.db.shops.update_details(shop_id, **changes)
        return self.db.get_shop_info(shop_id)

    def add_barber(self, shop_id: int, name: str,
                   avatar_filename: Optional[str] = None,
                   avatar_data: Optional[bytes] = None,
                   avatar_content_type: Optional[str] = None) -> Barber:
        """添加理发师，提供头像文件时先上传

        Raises:
            ValueError: 姓名为空
            RecordNotFound: 店铺不存在
            UploadFailed: 头像上传失败（理发师不会被创建）
        """
        self.db.shops.get(shop_id)

        avatar_url = None
        if avatar_data is not None:
            if self.avatars is None:
                self.avatars = AvatarStore()
            avatar_url = self.avatars.upload(
                shop_id, avatar_filename or "avatar", avatar_data, avatar_content_type
            )

        barber = self.db.barbers.create(shop_id, name, avatar_url=avatar_url)
        logger.info(f"Barber '{barber.name}' added to shop {shop_id}")
        return barber

    def remove_barber(self, shop_id: int, barber_id: int) -> bool:
        """删除理发师

        Raises:
            RecordNotFound: 理发师不属于该店铺
            DependencyInUse: 仍有排队记录引用
        """
        self._require_barber(shop_id, barber_id)
        self.db.barbers.delete(barber_id)
        logger.info(f"Barber {barber_id} removed from shop {shop_id}")
        return True

    def add_service(self, shop_id: int, name: str, price: float,
                    duration_minutes: int) -> Service:
        self.db.shops.get(shop_id)
        service = self.db.services.create(shop_id, name, price, duration_minutes)
        logger.info(f"Service '{service.name}' added to shop {shop_id}")
        return service

    def remove_service(self, shop_id: int, service_id: int) -> bool:
        """删除服务项目

        Raises:
            RecordNotFound: 服务不属于该店铺
            DependencyInUse: 仍有排队记录关联
        """
        self.db.services.get_many(shop_id, [service_id])
        self.db.services.delete(service_id)
        logger.info(f"Service {service_id} removed from shop {shop_id}")
        return True

    def set_subscription_status(self, shop_id: int,
                                status: Optional[str],
                                stripe_customer_id: Optional[str] = None) -> Shop:
        shop = self.db.shops.set_subscription_status(
            shop_id, status, stripe_customer_id=stripe_customer_id
        )
        logger.info(f"Shop {shop_id} subscription status set to {status}")
        return shop

    def _require_barber(self, shop_id: int, barber_id: int):
        if self.db.barbers.get_in_shop(shop_id, barber_id) is None:
            raise RecordNotFound(f"Barber {barber_id} not found in shop {shop_id}")
