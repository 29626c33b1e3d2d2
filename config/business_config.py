"""
业务配置接口 - 支持可替换的业务配置

新项目可以实现自己的业务配置，替换默认配置。
"""
from abc import ABC, abstractmethod
from typing import List, Dict, Any


class BusinessConfig(ABC):
    """业务配置抽象基类"""

    @abstractmethod
    def get_default_services(self) -> List[Dict[str, Any]]:
        """获取新店铺的默认服务列表"""
        pass

    @abstractmethod
    def get_pricing_tiers(self) -> List[Dict[str, Any]]:
        """获取订阅套餐说明"""
        pass


class BarbershopConfig(BusinessConfig):
    """理发店业务配置"""

    def get_default_services(self) -> List[Dict[str, Any]]:
        return [
            {"name": "Haircut", "price": 25.0, "duration_minutes": 30},
            {"name": "Beard Trim", "price": 15.0, "duration_minutes": 15},
            {"name": "Haircut & Beard", "price": 35.0, "duration_minutes": 45},
            {"name": "Kids Cut", "price": 18.0, "duration_minutes": 20},
            {"name": "Hot Towel Shave", "price": 30.0, "duration_minutes": 30},
        ]

    def get_pricing_tiers(self) -> List[Dict[str, Any]]:
        return [
            {
                "name": "Trial",
                "price": 0.0,
                "period": "for your first 100 clients",
                "features": [
                    "100 free client credits",
                    "Full access to all features",
                    "Unlimited Barbers & Services",
                ],
            },
            {
                "name": "Pay-as-you-go",
                "price": 0.25,
                "period": "per completed client",
                "features": [
                    "All features included",
                    "Unlimited Barbers & Services",
                    "Daily Analytics",
                ],
            },
        ]


# 全局业务配置实例（可以在 app.py 中替换）
business_config: BusinessConfig = BarbershopConfig()
