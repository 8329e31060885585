class FileTransferError(Exception):
    """Base class for errors raised by the transfer core."""


class FileTooLargeError(FileTransferError):
    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"File exceeds maximum allowed size ({limit} bytes)")


class MalformedUploadError(FileTransferError):
    """The upload carries no usable file payload."""


class InvalidFileIdError(FileTransferError):
    """The supplied file ID can never name a stored object."""


class StorageFaultError(FileTransferError):
    """The upload directory could not be written to or read from."""
