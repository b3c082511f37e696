"""Processing phases and content types exchanged with the outer driver."""

from __future__ import annotations

from enum import Enum

__all__ = ["ProcessingPhase", "DataVolumeContentType"]


class ProcessingPhase(str, Enum):
    """Phase returned by a data source operation, telling the driver what to do next."""

    INFO = "Info"
    TRANSFER_DATA_FILE = "TransferDataFile"
    CONVERT = "Convert"
    RESIZE = "Resize"
    ERROR = "Error"
    DONE = "Done"


class DataVolumeContentType(str, Enum):
    """Kind of content expected to live at the endpoint."""

    KUBEVIRT = "kubevirt"
    ARCHIVE = "archive"
