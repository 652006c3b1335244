"""Exceptions raised while turning an uploaded spreadsheet into staging rows."""


class ParseError(Exception):
    """The uploaded file could not be turned into at least one non-empty sheet."""

    def __init__(self, message: str, file_name: str = None):
        self.message = message
        self.file_name = file_name
        super().__init__(message)


class UnsupportedFileTypeError(ParseError):
    """The file extension is not one of the supported spreadsheet formats."""


class FileTooLargeError(ParseError):
    """The file exceeds the configured upload size limit."""

    def __init__(self, file_name: str, file_size: int, max_bytes: int):
        self.file_size = file_size
        self.max_bytes = max_bytes
        super().__init__(
            f"{file_name} is too large. Maximum allowed upload size is {max_bytes // (1024 * 1024)}MB.",
            file_name=file_name,
        )
