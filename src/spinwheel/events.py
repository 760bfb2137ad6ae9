"""Event and value models for wheel spins."""

from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

WIN_THRESHOLD = 90
ROLL_MIN = 1
ROLL_MAX = 100


class RedemptionEvent(BaseModel):
    """A channel-point reward redemption as delivered by the chat client."""

    channel: str
    display_name: str
    login: str
    reward_id: str | None = None
    message: str = ""
    is_self: bool = False
    event_id: str = Field(default_factory=lambda: uuid4().hex)


class Outcome(BaseModel):
    """Result of one wheel spin. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    display_name: str
    roll: int = Field(ge=ROLL_MIN, le=ROLL_MAX)
    is_win: bool

    @classmethod
    def from_roll(cls, display_name: str, roll: int) -> "Outcome":
        """Build an outcome, deriving the win flag from the threshold."""
        return cls(display_name=display_name, roll=roll, is_win=roll > WIN_THRESHOLD)

    def to_payload(self) -> dict:
        """Overlay wire format."""
        return {
            "type": "spin",
            "username": self.display_name,
            "roll": self.roll,
            "isWin": self.is_win,
        }


class GrantResult(BaseModel):
    """Outcome of one VIP grant attempt."""

    success: bool
    already_granted: bool = False
