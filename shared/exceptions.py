"""
Custom exceptions for the Block Collector application
Provides consistent error handling across all pipeline stages
"""


class BlockCollectorError(Exception):
    """Base exception for all application-specific errors"""

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(BlockCollectorError):
    """Raised when there are configuration-related errors"""
    pass


class GitHubError(BlockCollectorError):
    """Raised when there are GitHub API related errors"""
    pass


class ExtractionError(BlockCollectorError):
    """Raised when block extraction cannot load its input"""
    pass


class QueueError(BlockCollectorError):
    """Raised when there are crawl queue errors"""
    pass


class StorageError(BlockCollectorError):
    """Raised when the blob store fails"""

    def __init__(self, message: str, key: str = None):
        super().__init__(message, {'key': key} if key is not None else None)
        self.key = key
