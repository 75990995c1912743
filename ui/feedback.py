# ui/feedback.py
import logging
from enum import Enum
from typing import Callable, List, Optional

from pydantic import BaseModel

from core.errors import ApiError, ClientValidationError, TransportError

logger = logging.getLogger(__name__)


class Variant(str, Enum):
    DEFAULT = "default"
    DESTRUCTIVE = "destructive"


class Feedback(BaseModel):
    """A user-visible message (a toast in the browser app)."""
    title: str
    description: Optional[str] = None
    variant: Variant = Variant.DEFAULT


FeedbackSink = Callable[[Feedback], None]


def error_feedback(exc: ApiError, fallback: str) -> Feedback:
    """Map an API failure to what the user sees. The server message wins when there is one."""
    if isinstance(exc, ClientValidationError):
        return Feedback(title="Missing information", description=exc.message, variant=Variant.DESTRUCTIVE)
    if isinstance(exc, TransportError):
        return Feedback(title="Connection problem",
                        description="Could not reach the server. We'll keep retrying in the background.",
                        variant=Variant.DESTRUCTIVE)
    return Feedback(title="Error", description=exc.message or fallback, variant=Variant.DESTRUCTIVE)


class FeedbackLog:
    """Feedback sink that keeps every message and writes it to the log."""

    def __init__(self):
        self.items: List[Feedback] = []

    def __call__(self, feedback: Feedback):
        self.items.append(feedback)
        level = logging.WARNING if feedback.variant == Variant.DESTRUCTIVE else logging.INFO
        logger.log(level, "%s: %s", feedback.title, feedback.description or "")

    @property
    def last(self) -> Optional[Feedback]:
        return self.items[-1] if self.items else None

    def titles(self) -> List[str]:
        return [f.title for f in self.items]
