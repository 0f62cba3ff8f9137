# evoting/errors.py
"""Domain errors.

Every rejection carries a stable machine-readable ``code`` plus a human message.
The app renders them as ``{"detail": message, "code": code}`` with ``status_code``.
"""


class EVotingError(Exception):
    code = "EVotingError"
    status_code = 400
    default_message = "Request could not be processed."

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


# --- Voting ---

class PortalClosed(EVotingError):
    code = "PortalClosed"
    status_code = 403
    default_message = "Voting portal is currently closed"


class InvalidCredential(EVotingError):
    code = "InvalidCredential"
    status_code = 404
    default_message = "Invalid voting number"


class AlreadyVoted(EVotingError):
    code = "AlreadyVoted"
    status_code = 409
    default_message = "This voting number has already been used"


class MissingPosition(EVotingError):
    code = "MissingPosition"
    status_code = 400
    default_message = "No votes provided"


class DuplicatePosition(EVotingError):
    code = "DuplicatePosition"
    status_code = 400
    default_message = "Duplicate positions in vote submission"


class InvalidCandidate(EVotingError):
    code = "InvalidCandidate"
    status_code = 400
    default_message = "Invalid candidate"


class IneligibleCandidate(EVotingError):
    code = "IneligibleCandidate"
    status_code = 400
    default_message = "Candidate is not eligible in your area"


class StoreUnavailable(EVotingError):
    code = "StoreUnavailable"
    status_code = 503
    default_message = "The election service is temporarily unavailable. Please try again."


# --- Results ---

class PortalStillOpen(EVotingError):
    code = "PortalStillOpen"
    status_code = 409
    default_message = "Voting portal is still open. Final results are not available yet."


# --- Registries ---

class DuplicateVoter(EVotingError):
    code = "DuplicateVoter"
    status_code = 409
    default_message = "Voter with this National ID or Email already exists"


class VoterNotFound(EVotingError):
    code = "VoterNotFound"
    status_code = 404
    default_message = "Voter not found"


class InvalidWard(EVotingError):
    code = "InvalidWard"
    status_code = 400
    default_message = "Selected ward does not belong to the constituency"


class AgeRequirement(EVotingError):
    code = "AgeRequirement"
    status_code = 400
    default_message = "You must be at least 18 years old and not older than 100 years."


class RegistrationClosed(EVotingError):
    code = "RegistrationClosed"
    status_code = 403
    default_message = "Voter registration is currently closed"


class DuplicateCandidate(EVotingError):
    code = "DuplicateCandidate"
    status_code = 409
    default_message = "Candidate for this party and position already exists in the specified area"


class CandidateNotFound(EVotingError):
    code = "CandidateNotFound"
    status_code = 404
    default_message = "Candidate not found"


class InvalidArea(EVotingError):
    code = "InvalidArea"
    status_code = 400
    default_message = "Invalid constituency or ward for this position"


class InvalidSchedule(EVotingError):
    code = "InvalidSchedule"
    status_code = 400
    default_message = "Start time must be before end time"


class CandidateHasVotes(EVotingError):
    code = "CandidateHasVotes"
    status_code = 409
    default_message = "Position and area cannot change once a candidate has votes"


# --- Requests ---

class InvalidRequest(EVotingError):
    code = "InvalidRequest"
    status_code = 422
    default_message = "Request validation failed"
