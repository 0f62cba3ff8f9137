from fastapi import APIRouter, BackgroundTasks, Depends
from pymongo.database import Database

from evoting.database.connection import get_db
from evoting.models.vote_model import BallotIn
from evoting.notifications import Notifier, get_notifier
from evoting.voting import VotingService

router = APIRouter(prefix="/voting", tags=["Voting"])


@router.get("/eligibility/{voting_number}")
def check_eligibility(voting_number: str, db: Database = Depends(get_db)):
    """
    Returns the candidates this voting number may choose from, per position.
    Read-only: calling it any number of times changes nothing.
    """
    return {"success": True, "data": VotingService(db).check_eligibility(voting_number)}


@router.post("/submit")
def submit_vote(
    ballot: BallotIn,
    background_tasks: BackgroundTasks,
    db: Database = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Casts a complete ballot: one candidate for each of the four positions.
    """
    choices = [choice.model_dump(mode="json") for choice in ballot.votes]
    receipt = VotingService(db).submit_ballot(
        ballot.votingNumber,
        choices,
        notify=lambda voter, voted_at: background_tasks.add_task(notifier.send_vote_confirmation, voter, voted_at),
    )
    return {
        "success": True,
        "message": receipt["message"],
        "data": {"votedAt": receipt["votedAt"], "positions": receipt["positions"]},
    }
