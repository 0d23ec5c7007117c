from config import config
from drivers.driver_base_drv import BlobServiceClient
from drivers.fs.fs_driver_drv import FSDriver
# SDK-backed drivers are imported lazily so "fs" works without them installed

def get_driver() -> BlobServiceClient:
    """
    Factory creating driver instance based on config.DRIVER_KIND.
    """
    kind = config.DRIVER_KIND.lower()
    
    if kind == "fs":
        return FSDriver()
    
    elif kind == "s3":
        from drivers.s3.s3_driver_drv import S3Driver
        return S3Driver()

    elif kind == "azure":
        from drivers.azure.azure_driver_drv import AzureDriver
        return AzureDriver()
    
    raise ValueError(f"Unknown driver kind: {kind}")
