from __future__ import annotations


class RoomError(Exception):
    """Base for failures the API surfaces to the caller.

    `reason` is a short machine-checkable code; `status_code` is the HTTP status
    routes translate it to.
    """

    reason: str = "room_error"
    status_code: int = 500

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.reason)

    def as_detail(self) -> dict[str, str]:
        return {"reason": self.reason, "message": str(self)}


class NotFound(RoomError):
    reason = "not_found"
    status_code = 404


class RoomNotFound(NotFound):
    reason = "room_not_found"

    def __init__(self, code: str | None = None) -> None:
        super().__init__(f"Room {code} not found" if code else "Room not found")


class PlayerNotFound(NotFound):
    reason = "player_not_found"

    def __init__(self, player_id: str | None = None) -> None:
        super().__init__(f"Player {player_id} not found" if player_id else "Player not found")


class InvalidRequest(RoomError, ValueError):
    reason = "validation_error"
    status_code = 400


class InvalidGuess(InvalidRequest):
    reason = "invalid_guess"


class StoreFailure(RoomError):
    reason = "store_failure"
    status_code = 500


class GenerationExhausted(RoomError):
    reason = "code_generation_exhausted"
    status_code = 500
