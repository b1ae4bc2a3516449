"""
Context Assembler for talk mode

Turns a classified question (plus the image pair, for visual questions) into
one ReasoningRequest. Pure transform: the controller loads the images, the
gateway talks to Gemini.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from errors import ImagesNotReady
from image_store import ImagePair
from query_classifier import QueryKind

VISUAL_SYSTEM_PROMPT = """You are a calm, practical guide helping a blind person.
You see two photos from the camera they wear: the previous view and the current view.

Speak like a human guide walking beside them.
Do not ask questions.
Do not give options.

Use 1 to 3 short sentences.
Say only what is visible and important for their question.
If there is danger (a vehicle, stairs, a drop-off, an obstacle in the path, fire, a pit or hole),
warn about it FIRST and clearly, even if they asked about something else.

End every response with:
Next step:
<one clear action>"""


GENERAL_SYSTEM_PROMPT = """You are a helpful assistant for a blind person.
They asked a general-knowledge question that does not need the camera.

Answer concisely in 1 to 3 short sentences.
Do not mention or describe any images.
Do not add a "Next step:" line."""


MIME_JPEG = "image/jpeg"


@dataclass(frozen=True)
class RequestPart:
    """One content part: either text or inline image bytes."""
    text: Optional[str] = None
    data: Optional[bytes] = None
    mime_type: Optional[str] = None

    @property
    def is_image(self) -> bool:
        return self.data is not None


@dataclass
class ReasoningRequest:
    """System instruction plus ordered content parts for one Gemini call."""
    kind: QueryKind
    system_instruction: str
    parts: List[RequestPart] = field(default_factory=list)

    def image_parts(self) -> List[RequestPart]:
        return [p for p in self.parts if p.is_image]


def assemble(
    kind: QueryKind,
    query_text: str,
    image_pair: Optional[ImagePair] = None
) -> ReasoningRequest:
    """
    Build the request for the chosen branch.

    Args:
        kind: classifier decision for the question
        query_text: the user's words, passed through unchanged
        image_pair: previous/current frames, required for VISUAL_CONTEXT

    Raises:
        ImagesNotReady: VISUAL_CONTEXT without an image pair
    """
    if kind is QueryKind.GENERAL_KNOWLEDGE:
        return ReasoningRequest(
            kind=kind,
            system_instruction=GENERAL_SYSTEM_PROMPT,
            parts=[RequestPart(text=f"Question: {query_text}")],
        )

    if image_pair is None:
        raise ImagesNotReady("Visual question without a ready image pair")

    # Previous before current: the prompt frames the pair as "before vs now"
    return ReasoningRequest(
        kind=kind,
        system_instruction=VISUAL_SYSTEM_PROMPT,
        parts=[
            RequestPart(text="Previous view:"),
            RequestPart(data=image_pair.previous, mime_type=MIME_JPEG),
            RequestPart(text="Current view:"),
            RequestPart(data=image_pair.current, mime_type=MIME_JPEG),
            RequestPart(text=f"User said: {query_text}"),
        ],
    )
