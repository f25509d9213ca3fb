class BackupError(Exception):
    """Base for failures that abort a whole export/import operation."""


class NothingToExport(BackupError):
    def __init__(self, collection=None):
        self.collection = collection
        super().__init__(f"No records to export from {collection}" if collection else "No records to export")


class BackupEncodeError(BackupError):
    pass


class BackupParseError(BackupError):
    """The uploaded file is corrupted or malformed."""


class UnsupportedCollection(BackupError):
    def __init__(self, collection: str, action: str = "export"):
        self.collection = collection
        self.action = action
        super().__init__(f"Collection {collection!r} is not supported for {action}")


class RowValidationError(Exception):
    """Scoped to a single CSV row; never aborts the batch."""

    def __init__(self, message: str, row=None):
        super().__init__(message)
        self.row = row
