"""Backend adapter implementations."""

from mediaops.adapters._cloud import CloudAdapter, CloudClient, HttpCloudClient, http_cloud_factory
from mediaops.adapters._ftp import FTPAdapter
from mediaops.adapters._local import LocalAdapter
from mediaops.adapters._sftp import HostKeyPolicy, SFTPAdapter
from mediaops.adapters._smb import SMBAdapter

__all__ = [
    "CloudAdapter",
    "CloudClient",
    "FTPAdapter",
    "HostKeyPolicy",
    "HttpCloudClient",
    "LocalAdapter",
    "SFTPAdapter",
    "SMBAdapter",
    "http_cloud_factory",
]
