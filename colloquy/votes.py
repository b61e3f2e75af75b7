"""Per-user up/down votes on debate messages."""

from dataclasses import dataclass

VOTE_CHOICES = ("up", "down", "none")


@dataclass(frozen=True)
class VoteTally:
    message_id: str
    upvotes: int = 0
    downvotes: int = 0

    @property
    def score(self) -> int:
        return self.upvotes - self.downvotes


class VoteLedger:
    """One vote per (message, user); casting "none" withdraws it."""

    def __init__(self) -> None:
        self._votes: dict[str, dict[str, str]] = {}

    def cast(self, message_id: str, user_id: str, vote: str) -> VoteTally:
        if vote not in VOTE_CHOICES:
            raise ValueError(f"Invalid vote '{vote}'. Valid: {', '.join(VOTE_CHOICES)}")
        if not user_id:
            raise ValueError("user_id must not be empty")

        ballots = self._votes.setdefault(message_id, {})
        if vote == "none":
            ballots.pop(user_id, None)
        else:
            ballots[user_id] = vote
        return self.tally(message_id)

    def user_vote(self, message_id: str, user_id: str) -> str:
        return self._votes.get(message_id, {}).get(user_id, "none")

    def tally(self, message_id: str) -> VoteTally:
        ballots = self._votes.get(message_id, {}).values()
        return VoteTally(
            message_id=message_id,
            upvotes=sum(1 for v in ballots if v == "up"),
            downvotes=sum(1 for v in ballots if v == "down"),
        )

    def forget(self, message_ids: list[str]) -> None:
        for message_id in message_ids:
            self._votes.pop(message_id, None)
