import os
from typing import Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, Field

REQUIRED_ENV = {
    "pr_body": "PR_BODY",
    "repo_owner": "REPO_OWNER",
    "repo_name": "REPO_NAME",
    "pr_number": "PR_NUMBER",
    "branch_name": "BRANCH_NAME",
    "ai_api_key": "AI_API_KEY",
    "github_token": "GITHUB_TOKEN",
}


class MissingEnvironmentError(ValueError):
    def __init__(self, names: List[str]) -> None:
        self.names = names
        super().__init__(f"Missing required environment variables: {', '.join(names)}")


class PullRequestContext(BaseModel):
    pr_body: str = Field(..., min_length=1)
    repo_owner: str = Field(..., min_length=1)
    repo_name: str = Field(..., min_length=1)
    pr_number: int = Field(..., gt=0)
    branch_name: str = Field(..., min_length=1)
    ai_api_key: str = Field(..., min_length=1, repr=False)
    github_token: str = Field(..., min_length=1, repr=False)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "PullRequestContext":
        environ = os.environ if environ is None else environ
        values: Dict[str, str] = {}
        missing: List[str] = []
        for field_name, env_name in REQUIRED_ENV.items():
            value = environ.get(env_name, "")
            if not value.strip():
                missing.append(env_name)
            values[field_name] = value
        if missing:
            raise MissingEnvironmentError(missing)
        return cls(**values)

    @property
    def repository(self) -> str:
        return f"{self.repo_owner}/{self.repo_name}"


class FileChange(BaseModel):
    name: str
    path: str
    via: Literal["tool", "gh"] = "tool"


class ImplementationResult(BaseModel):
    status: Literal["success", "failure"]
    message: str
    file_changes: List[FileChange] = Field(default_factory=list)
