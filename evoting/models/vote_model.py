from typing import List

from pydantic import BaseModel, Field

from evoting.models.candidate_model import Position


class BallotChoice(BaseModel):
    position: Position
    candidateId: str = Field(..., min_length=1)


class BallotIn(BaseModel):
    votingNumber: str = Field(..., min_length=1)
    votes: List[BallotChoice]
