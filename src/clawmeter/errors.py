class ScanError(Exception):
    """
    base class for every failure raised while scanning session logs.
    """


class RootUnreadable(ScanError):
    """
    the agents root could not be listed. This is the only failure
    that aborts a whole scan.
    """

    def __init__(self, root: "object", cause: "OSError") -> "None":
        super().__init__(f"cannot list agents root {root}: {cause}")
        self.root = root
        self.cause = cause


class FileUnreadable(ScanError):
    """
    a single session log could not be opened or read. The file is
    skipped and the scan continues.
    """


class DecodeError(ScanError):
    """
    a single line is not a valid record. Only that line is skipped.
    """


class TimestampUnparsable(DecodeError):
    """
    the record decoded but carries no usable timestamp, so it can't
    be placed in any window.
    """


class ScanCancelled(ScanError):
    """
    the scan ran past its deadline. Whatever was accumulated so far
    must be discarded.
    """
