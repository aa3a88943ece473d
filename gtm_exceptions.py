"""GTM container optimizer exceptions.

Only structural problems with the input document and misuse of the
generator are fatal. Everything else degrades to "no match".
"""


class InvalidContainerError(Exception):
    """The input is not a usable GTM container export.

    Attributes:
        reason: what is wrong with the document
        source: file path or other origin of the document, if known
    """

    def __init__(self, reason: str, source: str = None) -> None:
        self.reason = reason
        self.source = source
        if source:
            message = f"Invalid GTM container export ({source}): {reason}"
        else:
            message = f"Invalid GTM container export: {reason}"
        super().__init__(message)


class GeneratorError(Exception):
    """The server-side generator was used out of order."""

    def __init__(self, operation: str, requirement: str) -> None:
        self.operation = operation
        self.requirement = requirement
        super().__init__(f"Cannot run {operation}: {requirement}")
