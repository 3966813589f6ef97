from typing import Any, Optional


class GitLabError(Exception):
    pass


class ConfigurationError(GitLabError):
    pass


class GitLabAPIError(GitLabError):
    def __init__(self, message: str, status: int = 0, url: Optional[str] = None, body: Any = None):
        super().__init__(message)
        self.status = status
        self.url = url
        self.body = body


class GitLabAuthError(GitLabAPIError):
    pass
