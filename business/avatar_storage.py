"""理发师头像存储

头像上传到 S3 兼容的对象存储（avatars 桶），
对象键为 ``<shop_id>/<毫秒时间戳>.<扩展名>``，返回公开访问地址。
"""
import time
from typing import Any, Callable, Optional

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from config.settings import settings
from database.exceptions import UploadFailed

MAX_AVATAR_SIZE_BYTES = 5 * 1024 * 1024  # 5MB


def get_storage_client():
    """按配置创建 boto3 S3 客户端"""
    return boto3.client(
        "s3",
        endpoint_url=settings.storage_endpoint_url or None,
        aws_access_key_id=settings.storage_access_key_id or None,
        aws_secret_access_key=settings.storage_secret_access_key or None,
        config=Config(signature_version="s3v4"),
        region_name=settings.storage_region,
    )


def avatar_extension(filename: str) -> str:
    """取文件扩展名（小写），没有扩展名时返回 bin"""
    if "." not in filename:
        return "bin"
    ext = filename.rsplit(".", 1)[-1].lower()
    return "".join(c for c in ext if c.isalnum()) or "bin"


class AvatarStore:
    """头像对象存储"""

    def __init__(self, client: Optional[Any] = None,
                 bucket: Optional[str] = None,
                 public_base_url: Optional[str] = None,
                 clock: Callable[[], float] = time.time):
        """
        Args:
            client: boto3 S3 客户端，默认按配置创建
            bucket: 桶名，默认 settings.storage_bucket
            public_base_url: 公开访问根地址，默认 settings.storage_public_base_url
            clock: 时间戳来源（秒）
        """
        self._client = client
        self.bucket = bucket or settings.storage_bucket
        self.public_base_url = (
            public_base_url if public_base_url is not None
            else settings.storage_public_base_url
        )
        self._clock = clock

    @property
    def client(self):
        if self._client is None:
            self._client = get_storage_client()
        return self._client

    def build_key(self, shop_id: int, filename: str) -> str:
        return f"{shop_id}/{int(self._clock() * 1000)}.{avatar_extension(filename)}"

    def public_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{key}"
        endpoint = settings.storage_endpoint_url.rstrip("/")
        return f"{endpoint}/{self.bucket}/{key}"

    def upload(self, shop_id: int, filename: str, data: bytes,
               content_type: Optional[str] = None) -> str:
        """上传头像

        Args:
            shop_id: 店铺ID
            filename: 原始文件名（用于取扩展名）
            data: 文件内容
            content_type: MIME 类型，必须是 image/*

        Returns:
            头像公开访问地址

        Raises:
            UploadFailed: 文件无效或对象存储调用失败
        """
        if not data:
            raise UploadFailed("Avatar file is empty")
        if len(data) > MAX_AVATAR_SIZE_BYTES:
            raise UploadFailed(
                f"Avatar exceeds maximum of {MAX_AVATAR_SIZE_BYTES // (1024 * 1024)}MB"
            )
        if content_type and not content_type.startswith("image/"):
            raise UploadFailed(f"Avatar must be an image, got {content_type}")

        key = self.build_key(shop_id, filename)
        extra_args = {"ContentType": content_type} if content_type else {}
        try:
            self.client.put_object(
                Bucket=self.bucket, Key=key, Body=data, **extra_args
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Avatar upload failed for shop {shop_id}: {e}")
            raise UploadFailed(f"Error uploading avatar: {e}") from e

        logger.info(f"Avatar uploaded: {self.bucket}/{key}")
        return self.public_url(key)
