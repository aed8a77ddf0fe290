from typing import Any, Dict, Optional

import httpx

from promptrelay.context.fetchers.base import Fetcher
from promptrelay.core.exceptions import FetchFailure

GITHUB_API = "https://api.github.com"


class GitHubInfoFetcher(Fetcher):
    """GitHub user profile and public repositories, exposed under ``github``."""

    description = "Fetches GitHub user profile and repository information"
    required_params = ("username",)
    allowed_params = ("username", "include_profile", "include_repos", "repo_limit")

    def __init__(self, token: str = "", client: Optional[httpx.AsyncClient] = None):
        headers = {"Accept": "application/vnd.github+json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = client or httpx.AsyncClient(base_url=GITHUB_API, timeout=10.0)
        self._headers = headers

    async def _get(self, path: str, **query) -> Any:
        try:
            response = await self._client.get(path, headers=self._headers, params=query or None)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise FetchFailure("github_info", f"GitHub API returned {e.response.status_code} for {path}")
        except httpx.HTTPError as e:
            raise FetchFailure("github_info", f"GitHub API request failed: {e}")

    async def fetch(self, params: Dict[str, Any]) -> Dict[str, Any]:
        username = params["username"]
        result: Dict[str, Any] = {"username": username}

        if params.get("include_profile", True):
            profile = await self._get(f"/users/{username}")
            result["profile"] = {
                "name": profile.get("name"),
                "bio": profile.get("bio"),
                "company": profile.get("company"),
                "public_repos": profile.get("public_repos", 0),
                "followers": profile.get("followers", 0),
            }

        if params.get("include_repos", True):
            limit = int(params.get("repo_limit", 10))
            repos = await self._get(f"/users/{username}/repos", sort="updated", per_page=limit)
            result["repositories"] = [
                {
                    "name": r.get("name"),
                    "description": r.get("description"),
                    "language": r.get("language"),
                    "stars": r.get("stargazers_count", 0),
                    "open_issues": r.get("open_issues_count", 0),
                }
                for r in repos[:limit]
            ]

        return {"github": result}
