"""
Assignee scoring - keyword heuristics for "who should take this task".

Pure functions over plain member dicts (id, name, email, role, skills, tags,
github_username, github_url); no database or network access. The team tool
provider loads members and delegates here.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set

KEYWORD_GROUPS: Dict[str, List[str]] = {
    "frontend": ["frontend", "react", "ui", "tailwind", "css", "vite"],
    "backend": ["backend", "api", "express", "node", "server", "database", "supabase"],
    "notion": ["notion", "docs", "documentation"],
    "slack": ["slack", "message", "notification"],
    "testing": ["test", "jest", "vitest", "ci", "pipeline"],
}


@dataclass
class AssigneeSuggestion:
    candidates: List[Dict[str, Any]] = field(default_factory=list)
    recommended: List[Dict[str, Any]] = field(default_factory=list)
    github_usernames: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "candidates": self.candidates,
            "recommended": self.recommended,
            "githubUsernames": self.github_usernames,
        }


def _joined(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return " ".join(str(v) for v in value)
    return str(value or "")


def profile_text(member: Mapping[str, Any]) -> str:
    fields = ("name", "email", "role", "skills", "tags", "github_username", "github_url")
    return " ".join(_joined(member.get(key)) for key in fields).lower()


def matched_tags(text: str) -> Set[str]:
    """Tags whose keywords appear (as substrings) in the task text"""
    lowered = text.lower()
    return {
        tag for tag, keywords in KEYWORD_GROUPS.items()
        if any(keyword in lowered for keyword in keywords)
    }


def score_candidates(text: str, members: Sequence[Mapping[str, Any]]) -> Dict[Any, int]:
    """
    Score every member against the task text.

    +2 for each matched tag found in the member's profile, +1 for each
    keyword present in both the task text and the profile.
    """
    lowered = text.lower()
    tags = matched_tags(lowered)
    scores: Dict[Any, int] = {}
    for member in members:
        profile = profile_text(member)
        score = sum(2 for tag in tags if tag in profile)
        for keywords in KEYWORD_GROUPS.values():
            score += sum(1 for keyword in keywords if keyword in lowered and keyword in profile)
        scores[member.get("id")] = score
    return scores


def rank_candidates(
    members: Sequence[Mapping[str, Any]],
    scores: Mapping[Any, int]
) -> List[Dict[str, Any]]:
    """Members with a GitHub username first, then by score, then by name"""
    candidates = [
        {
            "id": member.get("id"),
            "name": member.get("name") or "",
            "email": member.get("email") or "",
            "github_username": member.get("github_username") or "",
            "role": member.get("role"),
            "score": scores.get(member.get("id"), 0),
        }
        for member in members
    ]
    candidates.sort(key=lambda c: (0 if c["github_username"] else 1, -c["score"], c["name"]))
    return candidates


def suggest_assignees(
    title: str,
    description: Optional[str],
    members: Sequence[Mapping[str, Any]],
    limit: int = 1,
    default_assignee: Optional[str] = None
) -> AssigneeSuggestion:
    """
    Rank team members for a task and pick GitHub usernames to assign.

    Always yields at least one username when any member has one or a
    default assignee is configured.
    """
    if not title:
        raise ValueError("title is required")

    text = f"{title} {description or ''}"
    candidates = rank_candidates(members, score_candidates(text, members))

    recommended = candidates[:max(1, int(limit))]
    usernames = [c["github_username"] for c in recommended if c["github_username"]]

    if not usernames:
        first_with_github = next((c for c in candidates if c["github_username"]), None)
        if first_with_github is not None:
            recommended = [first_with_github]
            usernames = [first_with_github["github_username"]]
        elif default_assignee:
            usernames = [default_assignee]

    return AssigneeSuggestion(candidates=candidates, recommended=recommended, github_usernames=usernames)
