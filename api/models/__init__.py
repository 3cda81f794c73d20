# Models module
from .import_log import ImportLogModel, ImportLogStatusEnum, ErrorDetail

__all__ = ["ImportLogModel", "ImportLogStatusEnum", "ErrorDetail"]
