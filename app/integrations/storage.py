"""
S3-compatible object storage integration for uploaded spreadsheets.
Uses boto3 so the same code talks to AWS S3, Supabase Storage (S3 protocol),
Backblaze B2, MinIO, etc.
"""
import logging
from typing import Dict, Any, List, Optional
import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from app.core.config import settings

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class StorageConnectionError(StorageError):
    """Raised when storage connection fails."""
    pass


class StorageUploadError(StorageError):
    """Raised when file upload fails."""
    pass


class StorageListError(StorageError):
    """Raised when a folder listing fails."""
    pass


class StorageDeleteError(StorageError):
    """Raised when an object could not be removed."""
    pass


def get_storage_client():
    """
    Get S3-compatible storage client.

    Returns:
        boto3 S3 client configured for the storage provider

    Raises:
        ValueError: If storage configuration is incomplete
    """
    if not all([settings.storage_access_key_id, settings.storage_secret_access_key, settings.storage_bucket_name]):
        raise ValueError(
            "Storage configuration is incomplete. Please set STORAGE_ACCESS_KEY_ID, "
            "STORAGE_SECRET_ACCESS_KEY, and STORAGE_BUCKET_NAME in your environment."
        )

    config = Config(
        signature_version='s3v4',
        retries={'max_attempts': settings.storage_max_retries, 'mode': 'standard'}
    )

    client_kwargs = {
        'service_name': 's3',
        'aws_access_key_id': settings.storage_access_key_id,
        'aws_secret_access_key': settings.storage_secret_access_key,
        'config': config,
    }

    # Endpoint URL for non-AWS providers
    if settings.storage_endpoint_url:
        client_kwargs['endpoint_url'] = settings.storage_endpoint_url

    if settings.storage_region:
        client_kwargs['region_name'] = settings.storage_region

    try:
        return boto3.client(**client_kwargs)
    except Exception as e:
        logger.error(f"Failed to create storage client: {e}")
        raise StorageConnectionError(f"Failed to connect to storage: {str(e)}")


def upload_file(
    file_content: bytes,
    file_name: str,
    folder: str,
    content_type: Optional[str] = None
) -> Dict[str, Any]:
    """
    Upload a file to S3-compatible storage.

    Args:
        file_content: The file content as bytes
        file_name: The object name inside ``folder``
        folder: The folder/prefix to store the file in (e.g. "{org_id}/uploads")
        content_type: Optional MIME type recorded on the object

    Returns:
        Dictionary with upload details:
        - file_id: The object's ETag
        - file_name: Object name
        - file_path: Full key in storage
        - size: File size in bytes

    Raises:
        StorageUploadError: If upload fails
    """
    file_path = f"{folder.rstrip('/')}/{file_name}"
    params = {
        'Bucket': settings.storage_bucket_name,
        'Key': file_path,
        'Body': file_content,
    }
    if content_type:
        params['ContentType'] = content_type

    try:
        client = get_storage_client()
        response = client.put_object(**params)
    except ClientError as e:
        error_code = e.response.get('Error', {}).get('Code', 'Unknown')
        logger.error(f"Storage upload failed: {error_code} - {str(e)}")
        raise StorageUploadError(f"Upload failed: {str(e)}")
    except Exception as e:
        logger.error(f"Unexpected error during upload: {str(e)}")
        raise StorageUploadError(f"Upload failed: {str(e)}")

    logger.info("Uploaded %s (%d bytes)", file_path, len(file_content))
    return {
        "file_id": str(response.get('ETag', '')).strip('"'),
        "file_name": file_name,
        "file_path": file_path,
        "size": len(file_content)
    }


def delete_file(file_path: str) -> bool:
    """
    Delete a file from S3-compatible storage.

    Args:
        file_path: The full key of the file (e.g. "{org_id}/uploads/1700000000000_drivers.xlsx")

    Returns:
        True if deletion was successful, False otherwise
    """
    try:
        client = get_storage_client()

        client.delete_object(
            Bucket=settings.storage_bucket_name,
            Key=file_path
        )

        logger.info("Deleted %s from storage", file_path)
        return True

    except Exception as e:
        logger.error(f"Error deleting file from storage: {str(e)}")
        return False


def file_exists(file_path: str) -> bool:
    """
    Check if a file exists in S3-compatible storage.

    Raises:
        StorageError: If the existence check itself fails (anything but a 404)
    """
    try:
        client = get_storage_client()

        client.head_object(
            Bucket=settings.storage_bucket_name,
            Key=file_path
        )

        return True

    except ClientError as e:
        error_code = e.response.get('Error', {}).get('Code', 'Unknown')
        if error_code in ('404', 'NoSuchKey', 'NotFound'):
            return False
        logger.error(f"Error checking file existence: {str(e)}")
        raise StorageError(f"Failed to check {file_path}: {str(e)}")


def list_files(folder: str, page_size: int = 1000) -> List[Dict[str, Any]]:
    """
    List every file directly under a storage folder.

    Follows continuation tokens through the ``list_objects_v2`` paginator, so
    folders holding more than one page of keys are listed completely.

    Args:
        folder: The folder/prefix to list files from (e.g. "{org_id}/uploads")
        page_size: Keys requested per page (S3 caps this at 1000)

    Returns:
        List of file information dictionaries:
        - file_path: Full key of the file
        - name: Last path segment of the key
        - file_id: ETag
        - size: File size in bytes
        - last_modified: Last modification timestamp

    Raises:
        StorageListError: If listing fails
    """
    prefix = folder if folder.endswith('/') else f"{folder}/"
    files = []

    try:
        client = get_storage_client()
        paginator = client.get_paginator('list_objects_v2')
        pages = paginator.paginate(
            Bucket=settings.storage_bucket_name,
            Prefix=prefix,
            PaginationConfig={'PageSize': page_size}
        )

        for page in pages:
            for obj in page.get('Contents', []):
                key = obj['Key']
                name = key[len(prefix):]
                # Skip folder placeholders and nested "subfolders"
                if not name or '/' in name:
                    continue
                files.append({
                    'file_path': key,
                    'name': name,
                    'file_id': str(obj.get('ETag', '')).strip('"'),
                    'size': obj.get('Size', 0),
                    'last_modified': obj.get('LastModified'),
                })
    except Exception as e:
        logger.error(f"Error listing files in folder '{folder}': {str(e)}")
        raise StorageListError(f"Failed to list files: {str(e)}")

    logger.debug(f"Listed {len(files)} files under '{prefix}'")
    return files
