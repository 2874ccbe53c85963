ExtraInfoType = dict[str, str | None]


class WorkspaceError(Exception):
    """An error from the GitMate workspace."""

    def __init__(self, message: str, extra_info: ExtraInfoType | None = None):
        msg = message
        if extra_info:
            msg += " (" + ", ".join([f"{key}: {value}" for key, value in extra_info.items() if value is not None]) + ")"
        super().__init__(msg)


class WorkspaceNotStartedError(WorkspaceError):
    def __init__(self):
        super().__init__(message="No workspace has been started. Provide a GitHub repository URL first.")


class InvalidRepositoryUrlError(WorkspaceError):
    def __init__(self, repository_url: str):
        super().__init__(message="Please enter a valid GitHub repository URL.", extra_info={"repository_url": repository_url})


class FileNotInContextError(WorkspaceError):
    def __init__(self, file_id: str):
        super().__init__(message="The file is not in the context.", extra_info={"file_id": file_id})


class UnknownQuickActionError(WorkspaceError):
    def __init__(self, name: str, choices: list[str]):
        super().__init__(message="Unknown quick action.", extra_info={"name": name, "choices": ", ".join(choices)})
