# memory/classifier.py
#
# ============================================================================
# WHAT THIS FILE DOES:
# Decides two things about an email for the context manager:
#
#   - Is it urgent?            → raises its short-term importance
#   - Which project is it for? → groups it in medium-term memory
#
# The default HeuristicClassifier uses keyword matching and a regex.
# Anything with a `classify(email)` method
# returning a Classification can be plugged in instead (for example a
# model-backed classifier) without touching the memory logic.
# ============================================================================

import re
from typing import Optional, Protocol

from pydantic import BaseModel

from config.settings import URGENCY_KEYWORDS, PROJECT_PATTERN
from memory.models import EmailContent


class Classification(BaseModel):
    project_key: Optional[str] = None
    urgent: bool = False


class EmailClassifier(Protocol):
    def classify(self, email: EmailContent) -> Classification:
        ...


class HeuristicClassifier:
    """Keyword urgency + regex project extraction."""

    def __init__(self, urgency_keywords: list[str] = None, project_pattern: str = PROJECT_PATTERN):
        self.urgency_keywords = [kw.lower() for kw in (urgency_keywords or URGENCY_KEYWORDS)]
        self.project_regex = re.compile(project_pattern, re.IGNORECASE)

    def is_urgent(self, email: EmailContent) -> bool:
        subject = email.subject.lower()
        body = email.body.lower()
        return any(kw in subject or kw in body for kw in self.urgency_keywords)

    def extract_project_key(self, email: EmailContent) -> str | None:
        """
        "Re: Project Falcon kickoff" → "falcon kickoff".

        The subject is checked first, then the body. Returns None when
        neither mentions a project/initiative/launch.
        """
        match = self.project_regex.search(email.subject) or self.project_regex.search(email.body)
        if not match:
            return None
        key = match.group(1).strip().lower()
        return key or None

    def classify(self, email: EmailContent) -> Classification:
        return Classification(
            project_key=self.extract_project_key(email),
            urgent=self.is_urgent(email),
        )
