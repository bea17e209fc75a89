"""
Pydantic Schemas for API - Push envelopes, inbound commands, REST models.

These models define the exact contract between the browser and the engine.

Push envelope:
    {"type": "<message type>", "payload": ...}

Inbound command (the only one accepted):
    {"mode": "color" | "object"}     ("yolo" is accepted for object)

Error Codes:
- SESSION_NOT_FOUND: No session is running
- VALIDATION_ERROR: Request body is invalid
- INTERNAL_ERROR: Unexpected failure
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..engine_core.state import GameMode, GameState
from ..engine_core.events import MessageType, OutboundMessage

DETECTION_FAILED_LABEL = "detect_fail"


# =============================================================================
# Enums
# =============================================================================

class ErrorCode(str, Enum):
    """Structured error codes."""
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# =============================================================================
# Inbound
# =============================================================================

class ModeSelectionCommand(BaseModel):
    """The client's mode selection."""
    mode: GameMode

    @field_validator("mode", mode="before")
    @classmethod
    def _parse_mode(cls, value: Any) -> Any:
        if isinstance(value, str):
            return GameMode.parse(value)
        return value


# =============================================================================
# Push payloads
# =============================================================================

class CardStateInfo(BaseModel):
    """One card as the browser renders it."""
    model_config = ConfigDict(populate_by_name=True)

    color: Optional[str] = None
    object: Optional[str] = None
    is_matched: bool = Field(False, alias="isMatched")
    is_flipped_before: bool = Field(False, alias="isFlippedBefore")
    detection_failed: bool = Field(False, alias="detectionFailed")
    visibility: str = "hidden"


class GameStatePayload(BaseModel):
    """Payload of a game_state message."""
    card_states: dict[int, CardStateInfo]
    pairs_found: int
    current_flipped: list[int]
    status: str
    mode: Optional[str] = None

    @classmethod
    def from_state(cls, state: GameState) -> "GameStatePayload":
        label_field = "object" if state.mode == GameMode.OBJECT else "color"
        card_states = {}
        for cell in state.cells:
            label = DETECTION_FAILED_LABEL if cell.last_detection_failed else cell.label
            card_states[cell.index] = CardStateInfo(
                is_matched=cell.is_matched,
                is_flipped_before=cell.is_flipped_before,
                detection_failed=cell.last_detection_failed,
                visibility=state.visibility(cell.index).value,
                **{label_field: label},
            )
        return cls(
            card_states=card_states,
            pairs_found=state.pairs_found,
            current_flipped=list(state.current_flipped),
            status=state.status.value,
            mode=state.mode.value if state.mode else None,
        )

    def to_wire(self) -> dict[str, Any]:
        """Dump with browser field names; only the label field of this mode."""
        unused = "color" if self.mode == GameMode.OBJECT.value else "object"
        data = self.model_dump(mode="json", exclude={"card_states"})
        data["card_states"] = {
            str(index): card.model_dump(by_alias=True, exclude={unused})
            for index, card in self.card_states.items()
        }
        return data


class FrameUpdatePayload(BaseModel):
    """Payload of a frame_update message. Images are base64 JPEG."""
    frame: Optional[str] = None
    transformed_frame: Optional[str] = None


class ArmStatusPayload(BaseModel):
    """Payload of an arm_status message."""
    action: str
    success: bool


class PushEnvelope(BaseModel):
    """Every push message."""
    type: MessageType
    payload: Any = None


def serialize_message(message: OutboundMessage) -> dict[str, Any]:
    """Render an engine message as a JSON-ready envelope."""
    payload = message.payload
    if message.type == MessageType.GAME_STATE:
        payload = GameStatePayload.from_state(payload).to_wire()
    elif message.type == MessageType.FRAME_UPDATE:
        payload = FrameUpdatePayload(**payload).model_dump(exclude_none=True)
    elif message.type == MessageType.ARM_STATUS:
        payload = ArmStatusPayload(**payload).model_dump()
    return PushEnvelope(type=message.type, payload=payload).model_dump(mode="json")


# =============================================================================
# REST
# =============================================================================

class SessionSnapshotResponse(BaseModel):
    """Current session, for polling clients and operators."""
    session_id: str
    mode: str
    status: str
    created_at: float
    subscribers: int
    pending_flip: Optional[int] = None
    generation: int
    consecutive_arm_failures: int
    loop_state: str
    game_state: dict[str, Any]


class TeardownResponse(BaseModel):
    """Acknowledgment that the session is gone and the arm is parked."""
    success: bool
    session_id: Optional[str] = None
    final_status: Optional[str] = None
    released: bool = False


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    error_code: ErrorCode
    details: Optional[dict[str, Any]] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    service: str = "flipmatch-engine"
    version: str = "0.1.0"
