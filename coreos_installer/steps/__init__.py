from .step_10_check_target import CheckTargetStep
from .step_20_locate_image import LocateImageStep
from .step_30_fetch_signature import FetchSignatureStep
from .step_40_write_image import WriteImageStep

__all__ = [
    "CheckTargetStep",
    "LocateImageStep",
    "FetchSignatureStep",
    "WriteImageStep",
]
