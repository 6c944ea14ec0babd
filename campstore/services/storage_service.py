"""
Payment slip storage on S3-compatible object storage (MinIO, AWS S3,
DigitalOcean Spaces).

Slips are private objects. Orders keep a stable reference URL and staff
open the file through a short-lived presigned link.
"""
import logging
from dataclasses import dataclass
from typing import BinaryIO, Mapping, Optional

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import ClientError
from flask import current_app

logger = logging.getLogger(__name__)

PRESIGNED_URL_TTL = 15 * 60


@dataclass(frozen=True)
class StorageSettings:
    endpoint: str
    access_key: str
    secret_key: str
    bucket: str
    region: str
    public_url: str

    @classmethod
    def from_config(cls, config: Mapping) -> 'StorageSettings':
        return cls(
            endpoint=config['S3_ENDPOINT'],
            access_key=config['S3_ACCESS_KEY'],
            secret_key=config['S3_SECRET_KEY'],
            bucket=config['S3_BUCKET'],
            region=config['S3_REGION'],
            public_url=config['S3_PUBLIC_URL'].rstrip('/')
        )


class StorageService:
    """
    Upload, reference and delete payment slips.

    Usage:
        storage = get_storage_service()
        url = storage.upload_file(stream, 'slips/ORD123/receipt.pdf', 'application/pdf')
        link = storage.generate_presigned_url(storage.object_name_from_url(url))
    """

    def __init__(self, config: Optional[Mapping] = None):
        self.settings = StorageSettings.from_config(config or current_app.config)
        self.bucket = self.settings.bucket
        self.client = boto3.client(
            's3',
            endpoint_url=self.settings.endpoint,
            aws_access_key_id=self.settings.access_key,
            aws_secret_access_key=self.settings.secret_key,
            region_name=self.settings.region,
            config=BotoConfig(signature_version='s3v4')
        )
        self.ensure_bucket()

    def ensure_bucket(self):
        """Create the slip bucket on first use. No public-read policy is set."""
        try:
            self.client.head_bucket(Bucket=self.bucket)
            return
        except ClientError as e:
            code = e.response.get('Error', {}).get('Code')
            if code not in ('404', 'NoSuchBucket'):
                logger.error(f"[STORAGE] Cannot check bucket '{self.bucket}': {e}")
                raise

        self.client.create_bucket(Bucket=self.bucket)
        logger.info(f"[STORAGE] Bucket '{self.bucket}' created")

    def ping(self) -> bool:
        """True when the bucket answers."""
        try:
            self.client.head_bucket(Bucket=self.bucket)
            return True
        except ClientError as e:
            logger.warning(f"[STORAGE] Bucket '{self.bucket}' unreachable: {e}")
            return False

    def upload_file(
        self,
        stream: BinaryIO,
        object_name: str,
        content_type: str,
        metadata: Optional[dict] = None
    ) -> str:
        """
        Store a file-like object under `object_name`.

        The stream is rewound first. Type and size checks belong to the
        caller. Returns the object's reference URL; ClientError propagates.
        """
        extra_args = {'ContentType': content_type, 'ACL': 'private'}
        if metadata:
            extra_args['Metadata'] = metadata

        stream.seek(0)
        try:
            self.client.upload_fileobj(stream, self.bucket, object_name, ExtraArgs=extra_args)
        except ClientError as e:
            logger.error(f"[STORAGE] Upload of '{object_name}' failed: {e}")
            raise

        logger.info(f"[STORAGE] Stored '{object_name}' ({content_type})")
        return self.get_object_url(object_name)

    def delete_file(self, object_name: str) -> bool:
        """Remove an object. Returns False (and logs) when storage refuses."""
        try:
            self.client.delete_object(Bucket=self.bucket, Key=object_name)
        except ClientError as e:
            logger.error(f"[STORAGE] Delete of '{object_name}' failed: {e}")
            return False
        logger.info(f"[STORAGE] Deleted '{object_name}'")
        return True

    def get_object_url(self, object_name: str) -> str:
        return f"{self.settings.public_url}/{self.bucket}/{object_name}"

    def object_name_from_url(self, url: Optional[str]) -> Optional[str]:
        """Key of an object stored by this service; None for any other URL."""
        prefix = self.get_object_url('')
        if url and url.startswith(prefix):
            return url[len(prefix):]
        return None

    def generate_presigned_url(self, object_name: str, expires_in: int = PRESIGNED_URL_TTL) -> str:
        return self.client.generate_presigned_url(
            'get_object',
            Params={'Bucket': self.bucket, 'Key': object_name},
            ExpiresIn=expires_in
        )


_storage_service = None


def get_storage_service() -> StorageService:
    """
    Storage for the current app.

    An object placed in app.extensions['slip_storage'] wins (tests use it);
    otherwise a process-wide StorageService is created on first use.
    """
    override = current_app.extensions.get('slip_storage')
    if override is not None:
        return override

    global _storage_service
    if _storage_service is None:
        _storage_service = StorageService()
    return _storage_service
